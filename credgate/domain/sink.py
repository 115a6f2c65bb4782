from typing import Protocol, Any, Dict, Optional
import asyncio
import json
import logging

import aiohttp

logger = logging.getLogger("credgate.audit.sink")


class AuditSink(Protocol):
    async def emit(self, event: Dict[str, Any]) -> None:
        """Emit an audit event to the sink."""
        ...


class StdOutSink:
    def __init__(self):
        self._logger = logging.getLogger("credgate.audit")

    async def emit(self, event: Dict[str, Any]) -> None:
        self._logger.info(json.dumps(event, sort_keys=True, default=str))


class HttpSink:
    """Queues events and posts them to an audit collector from a worker task."""

    def __init__(self, service_url: str, api_key: Optional[str] = None, max_queue_size: int = 1000):
        self.url = f"{service_url.rstrip('/')}/events"
        self.api_key = api_key
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._worker_task: Optional[asyncio.Task] = None

    def _start_worker(self):
        if self._worker_task is None or self._worker_task.done():
            self._worker_task = asyncio.get_running_loop().create_task(self._worker())

    async def _worker(self):
        async with aiohttp.ClientSession() as session:
            while True:
                event = await self.queue.get()
                try:
                    headers = {"Content-Type": "application/json"}
                    if self.api_key:
                        headers["Authorization"] = f"Bearer {self.api_key}"

                    timeout = aiohttp.ClientTimeout(total=5.0)
                    async with session.post(self.url, json=event, headers=headers, timeout=timeout) as resp:
                        if resp.status >= 400:
                            logger.error(f"Audit service error: {resp.status}")
                except Exception as e:
                    logger.error(f"Audit sink transmission error: {type(e).__name__}: {e}")
                finally:
                    self.queue.task_done()

    async def emit(self, event: Dict[str, Any]) -> None:
        self._start_worker()

        if self.queue.full():
            # Drop newest on overflow
            logger.warning("audit_queue_dropped_total: queue full, dropping newest event")
            return

        await self.queue.put(event)

    async def close(self) -> None:
        if self._worker_task:
            self._worker_task.cancel()
            self._worker_task = None


class CompositeSink:
    def __init__(self, sinks: list):
        self.sinks = sinks

    async def emit(self, event: Dict[str, Any]) -> None:
        for sink in self.sinks:
            try:
                await sink.emit(event)
            except Exception as e:
                logger.error(f"Audit sink {type(sink).__name__} failed: {e}")

    async def close(self) -> None:
        for sink in self.sinks:
            close = getattr(sink, "close", None)
            if close is not None:
                await close()
