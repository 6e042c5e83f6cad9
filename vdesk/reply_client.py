"""Reply collaborator for the chat pipeline.

The pipeline only depends on ``ReplyClient.reply(system_persona, history)``,
which returns the assistant text or raises ``ReplyError``. ``HttpReplyClient``
talks to an OpenAI-compatible chat-completions endpoint:

    POST {endpoint}
    {"model": ..., "messages": [{"role": "system", ...}, *history]}
    -> {"choices": [{"message": {"content": "..."}}]}

A plain ``{"content": "..."}`` body is accepted as well.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Union

import requests

from .config import ReplyConfig
from .errors import FailureKind, ReplyError

logger = logging.getLogger("vdesk.reply")

History = List[Dict[str, str]]


class ReplyClient(Protocol):
    async def reply(self, system_persona: str, history: History) -> str:
        ...


@dataclass
class Replied:
    content: str


@dataclass
class Failed:
    kind: FailureKind
    detail: str = ""


ReplyOutcome = Union[Replied, Failed]


async def request_reply(client: ReplyClient, system_persona: str, history: History, timeout: float) -> ReplyOutcome:
    """Await one reply under a deadline and fold every failure into ``Failed``."""
    try:
        content = await asyncio.wait_for(client.reply(system_persona, history), timeout=timeout)
    except asyncio.TimeoutError:
        return Failed(FailureKind.timeout, f"no reply within {timeout:g}s")
    except ReplyError as e:
        return Failed(e.kind, e.detail)
    except Exception as e:
        logger.exception("reply collaborator raised unexpectedly")
        return Failed(FailureKind.unreachable, str(e))
    if not isinstance(content, str) or not content.strip():
        return Failed(FailureKind.malformed, "empty reply")
    return Replied(content.strip())


def extract_content(body: Any) -> str:
    if isinstance(body, dict):
        if isinstance(body.get("content"), str):
            return body["content"]
        choices = body.get("choices")
        if isinstance(choices, list) and choices:
            message = choices[0].get("message") if isinstance(choices[0], dict) else None
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                return message["content"]
    raise ReplyError(FailureKind.malformed, "response has no reply content")


class HttpReplyClient:
    def __init__(self, cfg: ReplyConfig, environ: Optional[Mapping[str, str]] = None) -> None:
        self.cfg = cfg
        self._environ = environ

    def _api_key(self) -> Optional[str]:
        env = os.environ if self._environ is None else self._environ
        return env.get(self.cfg.api_key_env) or None

    async def reply(self, system_persona: str, history: History) -> str:
        return await asyncio.to_thread(self._post, system_persona, history)

    def _post(self, system_persona: str, history: History) -> str:
        api_key = self._api_key()
        if not api_key:
            raise ReplyError(FailureKind.missing_credential, f"{self.cfg.api_key_env} not set")
        if not self.cfg.endpoint:
            raise ReplyError(FailureKind.unreachable, "no reply endpoint configured")

        payload = {
            "model": self.cfg.model,
            "messages": [{"role": "system", "content": system_persona}, *history],
        }
        headers = {"Authorization": f"Bearer {api_key}", "User-Agent": "vdesk/0.1"}
        try:
            resp = requests.post(self.cfg.endpoint, json=payload, headers=headers, timeout=self.cfg.timeout_sec)
        except requests.exceptions.Timeout as e:
            raise ReplyError(FailureKind.timeout, str(e))
        except requests.exceptions.RequestException as e:
            raise ReplyError(FailureKind.unreachable, str(e))

        if not 200 <= resp.status_code < 300:
            raise ReplyError(FailureKind.bad_status, f"HTTP {resp.status_code}")
        try:
            body = resp.json()
        except ValueError:
            raise ReplyError(FailureKind.malformed, "response is not JSON")
        return extract_content(body)
