from __future__ import annotations

import base64
import binascii
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .chat import serialize_message
from .config import DeskConfig, load_config
from .errors import OnboardingError, WindowLimitReached
from .models import AppKind
from .schemas import (
    AvatarReq,
    ChatSendReq,
    ChatSendResp,
    ChatThreadModel,
    DoodleResp,
    OnboardingReq,
    ProfileModel,
    RpsPlayReq,
    RpsPlayResp,
    SessionState,
    StrokeReq,
    WindowMove,
    WindowOpen,
    WindowState,
)
from .session import DesktopSession, serialize_thread

logger = logging.getLogger("vdesk.api")


def make_app(config: Optional[DeskConfig] = None, session: Optional[DesktopSession] = None) -> FastAPI:
    if session is None:
        session = DesktopSession(config or load_config())

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        logger.info("session API ready (onboarded=%s)", session.is_onboarded)
        yield
        # replies already in flight still land before shutdown
        await session.chat.drain()

    app = FastAPI(title="vdesk session API", version="v1", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost", "http://127.0.0.1", "*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.session = session
    events = session.events

    # ----- Helpers -----
    def to_state_model() -> SessionState:
        return SessionState.model_validate(session.snapshot())

    def to_window_model(win_id: str) -> WindowState:
        win = session.windows.get(win_id)
        if win is None:
            raise HTTPException(status_code=404, detail="window not found")
        return WindowState.model_validate(session.serialize_window_with_state(win))

    # ----- Routes -----
    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"ok": True}

    @app.get("/state", response_model=SessionState)
    async def state() -> SessionState:
        return to_state_model()

    @app.post("/onboarding", response_model=ProfileModel)
    async def onboarding(payload: OnboardingReq) -> ProfileModel:
        try:
            profile = await session.complete_onboarding(payload.name, payload.timezone)
        except OnboardingError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return ProfileModel.model_validate(profile.model_dump())

    @app.post("/logout", response_model=SessionState)
    async def logout() -> SessionState:
        await session.logout()
        return to_state_model()

    @app.post("/profile/avatar", response_model=SessionState)
    async def avatar(payload: AvatarReq) -> SessionState:
        image = None
        if payload.image_b64:
            try:
                image = base64.b64decode(payload.image_b64, validate=True)
            except (binascii.Error, ValueError):
                raise HTTPException(status_code=422, detail="image_b64 is not valid base64")
        await session.set_avatar(reference=payload.reference, image=image, window_id=payload.window_id)
        return to_state_model()

    # ----- Windows -----
    @app.post("/windows", response_model=WindowState)
    async def open_window(payload: WindowOpen) -> WindowState:
        try:
            win = await session.open_window(AppKind(payload.app_kind), payload.title)
        except WindowLimitReached as e:
            raise HTTPException(status_code=409, detail=str(e))
        return to_window_model(win.id)

    @app.get("/windows/{win_id}", response_model=WindowState)
    async def get_window(win_id: str) -> WindowState:
        return to_window_model(win_id)

    @app.post("/windows/{win_id}/focus", response_model=SessionState)
    async def focus(win_id: str) -> SessionState:
        await session.focus_window(win_id)
        return to_state_model()

    @app.post("/windows/{win_id}/move", response_model=SessionState)
    async def move(win_id: str, payload: WindowMove) -> SessionState:
        await session.move_window(win_id, payload.x, payload.y)
        return to_state_model()

    @app.post("/windows/{win_id}/close", response_model=SessionState)
    async def close(win_id: str) -> SessionState:
        await session.close_window(win_id)
        return to_state_model()

    # ----- Chat -----
    @app.post("/windows/{win_id}/chat/{thread_id}/send", response_model=ChatSendResp)
    async def chat_send(win_id: str, thread_id: str, payload: ChatSendReq) -> ChatSendResp:
        msg = await session.submit_chat(win_id, thread_id, payload.text)
        if msg is None:
            return ChatSendResp(accepted=False)
        return ChatSendResp(accepted=True, message=serialize_message(msg))

    @app.get("/windows/{win_id}/chat/{thread_id}", response_model=ChatThreadModel)
    async def chat_thread(win_id: str, thread_id: str) -> ChatThreadModel:
        thread = session.chat_thread(win_id, thread_id)
        if thread is None:
            raise HTTPException(status_code=404, detail="chat window not found")
        return ChatThreadModel.model_validate(serialize_thread(thread))

    # ----- Games -----
    @app.post("/windows/{win_id}/rps/play", response_model=RpsPlayResp)
    async def rps_play(win_id: str, payload: RpsPlayReq) -> RpsPlayResp:
        played = await session.play_rps(win_id, payload.choice)
        if played is None:
            return RpsPlayResp(accepted=False)
        result, score = played
        return RpsPlayResp(
            accepted=True,
            user_choice=result.user_choice.value,
            ai_choice=result.ai_choice.value,
            outcome=result.outcome.value,
            score=score,
        )

    @app.post("/windows/{win_id}/rps/reset", response_model=RpsPlayResp)
    async def rps_reset(win_id: str) -> RpsPlayResp:
        return RpsPlayResp(accepted=await session.reset_rps(win_id))

    @app.post("/windows/{win_id}/doodle/start", response_model=DoodleResp)
    async def doodle_start(win_id: str) -> DoodleResp:
        word = await session.doodle_start(win_id)
        return DoodleResp(accepted=word is not None, target_word=word)

    @app.post("/windows/{win_id}/doodle/stroke", response_model=DoodleResp)
    async def doodle_stroke(win_id: str, payload: StrokeReq) -> DoodleResp:
        added = await session.doodle_stroke(win_id, tuple(payload.start), tuple(payload.end))
        return DoodleResp(accepted=added)

    @app.post("/windows/{win_id}/doodle/clear", response_model=DoodleResp)
    async def doodle_clear(win_id: str) -> DoodleResp:
        return DoodleResp(accepted=await session.doodle_clear(win_id))

    @app.post("/windows/{win_id}/doodle/guess", response_model=DoodleResp)
    async def doodle_guess(win_id: str) -> DoodleResp:
        result = await session.doodle_guess(win_id)
        return DoodleResp(accepted=result is not None, result=result)

    @app.websocket("/ws")
    async def ws(websocket: WebSocket) -> None:
        await websocket.accept()
        await events.add(websocket)
        try:
            while True:
                # Keep connection alive; ignore client messages for now
                await websocket.receive_text()
        except WebSocketDisconnect:
            await events.remove(websocket)

    return app
