"""Chat message pipeline.

A send appends the user's message right away, marks the thread as waiting,
and awaits the reply collaborator with the session lock released. Exactly
one assistant message follows: the collaborator's reply, or a fixed
fallback message naming why no reply came.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any, Callable, Dict, Optional, Set

from .errors import FailureKind
from .events import EventHub
from .models import ChatState, ChatThread, Message, Role, new_id, now
from .profile_store import ProfileStore
from .reply_client import Failed, Replied, ReplyClient, ReplyOutcome, request_reply

logger = logging.getLogger("vdesk.chat")

FALLBACK_MESSAGES: Dict[FailureKind, str] = {
    FailureKind.missing_credential: (
        "I can't reply right now: the chat service has no API key configured."
    ),
    FailureKind.unreachable: (
        "I can't reach the chat service at the moment. Please try again in a little while."
    ),
    FailureKind.bad_status: (
        "The chat service returned an error, so I couldn't answer this time."
    ),
    FailureKind.malformed: (
        "The chat service sent back a reply I couldn't read, so I couldn't answer this time."
    ),
    FailureKind.timeout: (
        "The chat service took too long to answer, so I stopped waiting."
    ),
}

GENERIC_PERSONA = (
    "You are {contact}, a friendly contact chatting inside a small virtual desktop. "
    "Keep replies short. You are talking to {name}, whose local timezone is {timezone}."
)


def serialize_message(m: Message) -> Dict[str, Any]:
    data = asdict(m)
    data["role"] = m.role.value
    return data


class ChatPipeline:
    def __init__(
        self,
        client: ReplyClient,
        lock: asyncio.Lock,
        events: EventHub,
        profiles: ProfileStore,
        personas: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        clock: Callable[[], float] = now,
    ) -> None:
        self.client = client
        self._lock = lock
        self._events = events
        self._profiles = profiles
        self.personas = dict(personas or {})
        self.timeout = timeout
        self._clock = clock
        self._tasks: Set[asyncio.Task] = set()

    # ----- Sending -----
    async def send(self, chat: ChatState, thread_id: str, text: str, window_id: str = "") -> Optional[ReplyOutcome]:
        """Send ``text`` on a thread and wait for the reply.

        Returns None when the send is rejected (blank text, or a reply is
        already pending on this thread); the thread is left untouched.
        """
        started = await self._begin(chat, thread_id, text, window_id)
        if started is None:
            return None
        thread, history = started
        return await self._finish(thread, history, window_id)

    async def submit(self, chat: ChatState, thread_id: str, text: str, window_id: str = "") -> Optional[Message]:
        """Append the user message and schedule the reply in the background.

        Returns the optimistic user message, or None when rejected.
        """
        started = await self._begin(chat, thread_id, text, window_id)
        if started is None:
            return None
        thread, history = started
        task = asyncio.create_task(self._finish(thread, history, window_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return thread.messages[-1]

    async def drain(self) -> None:
        """Wait until every background reply has landed."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # ----- Helpers -----
    def persona_for(self, contact: str) -> str:
        profile = self._profiles.profile
        fields = {
            "{contact}": contact.capitalize(),
            "{name}": profile.name if profile else "Guest",
            "{timezone}": profile.timezone if profile else "UTC",
        }
        # only these placeholders are filled; any other brace text is kept as written
        persona = self.personas.get(contact, GENERIC_PERSONA)
        for placeholder, value in fields.items():
            persona = persona.replace(placeholder, value)
        return persona

    def _append(self, thread: ChatThread, role: Role, content: str, fallback: bool = False) -> Message:
        ts = self._clock()
        if thread.messages:
            ts = max(ts, thread.messages[-1].timestamp)
        msg = Message(id=new_id("msg"), role=role, content=content, timestamp=ts, fallback=fallback)
        thread.messages.append(msg)
        return msg

    async def _begin(self, chat: ChatState, thread_id: str, text: str, window_id: str):
        content = text or ""
        if not content.strip():
            return None
        async with self._lock:
            thread = chat.thread(thread_id)
            if thread.pending:
                logger.debug("send on %s rejected: reply pending", thread_id)
                return None
            msg = self._append(thread, Role.user, content)
            thread.pending = True
            history = thread.history()
        await self._events.emit("chat.message", self._payload(window_id, thread, msg))
        await self._events.emit("chat.typing", {"window_id": window_id, "thread": thread.contact, "typing": True})
        return thread, history

    async def _finish(self, thread: ChatThread, history, window_id: str) -> ReplyOutcome:
        try:
            try:
                outcome = await request_reply(self.client, self.persona_for(thread.contact), history, self.timeout)
            except Exception as e:
                logger.exception("reply for %s could not be requested", thread.contact)
                outcome = Failed(FailureKind.unreachable, f"{type(e).__name__}: {e}")
            async with self._lock:
                if isinstance(outcome, Replied):
                    msg = self._append(thread, Role.assistant, outcome.content)
                else:
                    logger.warning("reply for %s failed (%s): %s", thread.contact, outcome.kind.value, outcome.detail)
                    msg = self._append(thread, Role.assistant, FALLBACK_MESSAGES[outcome.kind], fallback=True)
        finally:
            thread.pending = False
        await self._events.emit("chat.message", self._payload(window_id, thread, msg))
        await self._events.emit("chat.typing", {"window_id": window_id, "thread": thread.contact, "typing": False})
        return outcome

    def _payload(self, window_id: str, thread: ChatThread, msg: Message) -> Dict[str, Any]:
        return {"window_id": window_id, "thread": thread.contact, "message": serialize_message(msg)}

