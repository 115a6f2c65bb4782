import time
import secrets


def uuid7() -> str:
    """Time-ordered UUIDv7 string.

    Record ids sort by creation time, which gives key listings a stable
    tie-break when two keys share a created_at timestamp.
    """
    ms = time.time_ns() // 1_000_000

    # 48-bit timestamp | version 7 | 12 random bits | variant 10 | 62 random bits
    value = (ms & 0xFFFFFFFFFFFF) << 80
    value |= 0x7 << 76
    value |= secrets.randbits(12) << 64
    value |= 0x2 << 62
    value |= secrets.randbits(62)

    h = f"{value:032x}"
    return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:]}"
