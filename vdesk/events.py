from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from starlette.websockets import WebSocket

logger = logging.getLogger("vdesk.events")

Listener = Callable[[str, Dict[str, Any]], None]


class EventHub:
    """Broadcast hub for session events.

    Fans each event out to connected WebSocket clients and to in-process
    listeners, and appends it to an NDJSON log when one is configured.
    """

    def __init__(self, log_path: Optional[Path] = None) -> None:
        self._clients: Set[WebSocket] = set()
        self._listeners: List[Listener] = []
        self._lock = asyncio.Lock()
        self._log_path = log_path

    async def add(self, ws: WebSocket) -> None:
        async with self._lock:
            self._clients.add(ws)

    async def remove(self, ws: WebSocket) -> None:
        async with self._lock:
            self._clients.discard(ws)

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    async def emit(self, event: str, data: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception:
                logger.exception("event listener failed for %s", event)
        self._append_log(event, data)

        payload = json.dumps({"event": event, "data": data})
        async with self._lock:
            targets = list(self._clients)
        # send outside the lock
        coros = [c.send_text(payload) for c in targets]
        if coros:
            await asyncio.gather(*coros, return_exceptions=True)

    def _append_log(self, event: str, data: Dict[str, Any]) -> None:
        if self._log_path is None:
            return
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "data": data,
        }
        try:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, separators=(",", ":")) + "\n")
        except OSError as e:
            logger.warning("could not append state event to %s: %s", self._log_path, e)
