"""Logging Hardening and Redaction.

Filters that keep secret material (serialized envelopes, bearer tokens,
private keys) out of application logs, whatever logger emits them.
"""
import logging
import re
from typing import List, Optional, Pattern, Tuple

SECRET_PATTERNS = [
    # iv:tag:ciphertext envelopes
    (re.compile(r'\b[0-9a-fA-F]{24}:[0-9a-fA-F]{32}:[0-9a-fA-F]+\b'), '[REDACTED_ENVELOPE]'),
    # Bearer tokens in the default issued format
    (re.compile(r'\b([a-z]+_live_)[0-9a-f]{64}\b'), r'\1[REDACTED]'),
    (re.compile(r'(Bearer\s+)\S+'), r'\1[REDACTED]'),
    # 32-byte hex private keys
    (re.compile(r'\b0x[0-9a-fA-F]{64}\b'), '0x[REDACTED]'),
    (re.compile(r'("(?:iv|tag|ciphertext|encrypted_private_key)":\s*")[^"]+(")'), r'\1[REDACTED]\2'),
]


def token_pattern(prefix: str) -> Tuple[Pattern, str]:
    """Pattern for tokens issued under a configured API_KEY_PREFIX."""
    return re.compile(rf'({re.escape(prefix)})[0-9a-f]{{64}}\b'), r'\1[REDACTED]'


def redact(text: str, patterns: Optional[List[Tuple[Pattern, str]]] = None) -> str:
    for pattern, replacement in patterns or SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class SecretRedactionFilter(logging.Filter):
    """Filter that redacts secret-like patterns from log records."""

    def __init__(self, token_prefix: Optional[str] = None):
        super().__init__()
        self.patterns = list(SECRET_PATTERNS)
        if token_prefix:
            self.patterns.insert(0, token_pattern(token_prefix))

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg, self.patterns)

        if isinstance(record.args, dict):
            record.args = {k: redact(v, self.patterns) if isinstance(v, str) else v for k, v in record.args.items()}
        elif record.args:
            record.args = tuple(redact(a, self.patterns) if isinstance(a, str) else a for a in record.args)

        return True


def _replace_filter(target, redact_filter: SecretRedactionFilter) -> None:
    for f in target.filters[:]:
        if isinstance(f, SecretRedactionFilter):
            target.removeFilter(f)
    target.addFilter(redact_filter)


def setup_logging_redaction(token_prefix: Optional[str] = None) -> None:
    """Apply the SecretRedactionFilter to the root logger and every known logger.

    Calling it again replaces the installed filters, so a configured
    `token_prefix` takes effect once settings are loaded.
    """
    redact_filter = SecretRedactionFilter(token_prefix)

    root_logger = logging.getLogger()
    _replace_filter(root_logger, redact_filter)

    # Logger filters do not apply to records propagated from children,
    # so handlers get the filter too.
    for handler in root_logger.handlers:
        _replace_filter(handler, redact_filter)

    for name in list(logging.root.manager.loggerDict):
        logger = logging.getLogger(name)
        _replace_filter(logger, redact_filter)

    logging.info("Logging redaction filters active.")
