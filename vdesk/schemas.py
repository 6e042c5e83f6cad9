from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class PositionModel(BaseModel):
    x: int
    y: int


class WindowOpen(BaseModel):
    app_kind: Literal["chat", "games", "profile"]
    title: Optional[str] = None


class WindowMove(BaseModel):
    x: int
    y: int


class WindowState(BaseModel):
    id: str
    app_kind: str
    title: str
    position: PositionModel
    z: int
    focused: bool
    state: Optional[Dict[str, Any]] = None


class ProfileModel(BaseModel):
    name: str
    timezone: str
    avatar: Optional[str] = None


class SessionState(BaseModel):
    onboarded: bool
    greeting: str
    profile: Optional[ProfileModel] = None
    windows: List[WindowState] = Field(default_factory=list)
    scoreboard: Dict[str, int] = Field(default_factory=dict)


class OnboardingReq(BaseModel):
    name: str = Field(min_length=1)
    timezone: Optional[str] = None


class AvatarReq(BaseModel):
    reference: Optional[str] = None
    image_b64: Optional[str] = None
    window_id: Optional[str] = None


class ChatSendReq(BaseModel):
    text: str


class MessageModel(BaseModel):
    id: str
    role: Literal["user", "assistant"]
    content: str
    timestamp: float
    fallback: bool = False


class ChatSendResp(BaseModel):
    accepted: bool
    message: Optional[MessageModel] = None


class ChatThreadModel(BaseModel):
    contact: str
    typing: bool
    messages: List[MessageModel] = Field(default_factory=list)


class RpsPlayReq(BaseModel):
    choice: Literal["rock", "paper", "scissors"]


class RpsPlayResp(BaseModel):
    accepted: bool
    user_choice: Optional[str] = None
    ai_choice: Optional[str] = None
    outcome: Optional[Literal["win", "lose", "tie"]] = None
    score: Optional[Dict[str, int]] = None


class StrokeReq(BaseModel):
    start: List[float] = Field(min_length=2, max_length=2)
    end: List[float] = Field(min_length=2, max_length=2)


class DoodleResp(BaseModel):
    accepted: bool
    target_word: Optional[str] = None
    result: Optional[str] = None
