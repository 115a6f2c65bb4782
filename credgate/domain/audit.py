"""Structured audit events for credential lifecycle actions.

Events are fire-and-forget: emission runs as a background task so a slow or
failing sink never blocks key creation or revocation. Failures surface as
ERROR logs for operational monitoring.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from credgate.domain.sink import AuditSink, StdOutSink
from credgate.utils.id import uuid7

logger = logging.getLogger(__name__)

SEVERITIES = ("info", "warning", "critical")

MAX_SAFE_INT = 9007199254740991
MAX_STRING_LENGTH = 1024


class AuditLogger:
    def __init__(self, sink: Optional[AuditSink] = None):
        self.sink: AuditSink = sink or StdOutSink()
        self._pending: Set[asyncio.Task] = set()

    def log_event(
        self,
        actor: str,
        action: str,
        severity: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        source_ip: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Build an event and hand it to the sink without waiting."""
        event = self.build_event(actor, action, severity, description, metadata, source_ip)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            try:
                asyncio.run(self._emit(event))
            except Exception as e:
                logger.error(f"AUDIT LOGGING FAILURE: {e}")
            return event

        task = loop.create_task(self._emit(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return event

    async def _emit(self, event: Dict[str, Any]) -> None:
        try:
            await self.sink.emit(event)
        except Exception as e:
            logger.error(f"AUDIT LOGGING FAILURE: action={event.get('action')} event_id={event.get('event_id')} error={e}")

    async def drain(self) -> None:
        """Wait for in-flight emissions (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def build_event(
        self,
        actor: str,
        action: str,
        severity: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        source_ip: Optional[str] = None,
    ) -> Dict[str, Any]:
        if severity not in SEVERITIES:
            raise ValueError(f"Unknown audit severity: {severity}")

        # ts format: RFC3339 UTC with millisecond precision
        ts = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'
        return {
            "event_id": uuid7(),
            "ts": ts,
            "actor": actor.lower(),
            "action": action,
            "severity": severity,
            "description": description,
            "metadata": self._sanitize(metadata or {}),
            "source_ip": source_ip or None,
        }

    def _sanitize(self, metadata: Dict[str, Any]) -> Dict[str, Any]:
        """Scalar-only metadata; anything else is dropped and listed."""
        safe: Dict[str, Any] = {}
        redacted = []
        for k, v in metadata.items():
            if isinstance(v, bool) or v is None or isinstance(v, float):
                safe[k] = v
            elif isinstance(v, int):
                if -MAX_SAFE_INT <= v <= MAX_SAFE_INT:
                    safe[k] = v
                else:
                    redacted.append(f"{k} (unsafe integer)")
            elif isinstance(v, str):
                if len(v) > MAX_STRING_LENGTH:
                    safe[k] = v[:MAX_STRING_LENGTH - 3] + "..."
                    redacted.append(f"{k} (truncated)")
                else:
                    safe[k] = v
            else:
                redacted.append(f"{k} (invalid type)")

        if redacted:
            safe["meta_redacted_keys"] = sorted(redacted)
            logger.warning(f"AUDIT_META_REDACTION: keys={redacted}")
        return safe
