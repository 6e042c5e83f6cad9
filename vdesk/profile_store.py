"""Profile record persistence.

The onboarded user's identity lives under one well-known key in a small
JSON key/value file. Avatar images captured by the host are written to a
content-addressed blob directory next to that file; the profile keeps only
the reference.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import OnboardingError, VdeskError

logger = logging.getLogger("vdesk.profile")

PROFILE_KEY = "vdesk.profile"
DEFAULT_TIMEZONE = "UTC"


def normalize_timezone(value: Optional[str]) -> str:
    name = (value or "").strip()
    if not name:
        return DEFAULT_TIMEZONE
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return DEFAULT_TIMEZONE
    return name


class UserProfile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1)
    timezone: str = DEFAULT_TIMEZONE
    avatar: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    @field_validator("timezone", mode="before")
    @classmethod
    def _known_zone(cls, v: Any) -> str:
        return normalize_timezone(v if isinstance(v, str) else None)


class JsonFileStorage:
    """Key/value record file, rewritten atomically on every change."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def get(self, key: str) -> Optional[Any]:
        return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("storage file %s unreadable, treating as empty: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="w", encoding="utf-8", dir=str(self.path.parent), prefix=f"{self.path.name}.", delete=False
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(json.dumps(data, indent=2, sort_keys=True))
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)


class ProfileStore:
    def __init__(self, storage: JsonFileStorage, blobs_dir: Optional[Path] = None) -> None:
        self.storage = storage
        self.blobs_dir = blobs_dir or storage.path.parent / "avatars"
        self._profile: Optional[UserProfile] = None

    @property
    def profile(self) -> Optional[UserProfile]:
        return self._profile

    @property
    def is_onboarded(self) -> bool:
        return self._profile is not None

    def load(self) -> Optional[UserProfile]:
        """Read the persisted record. A missing or invalid record means onboarding is needed."""
        raw = self.storage.get(PROFILE_KEY)
        if raw is None:
            self._profile = None
            return None
        try:
            self._profile = UserProfile.model_validate(raw)
        except ValidationError as e:
            logger.warning("stored profile rejected, onboarding required: %s", e)
            self._profile = None
        return self._profile

    def complete_onboarding(self, name: str, timezone: Optional[str] = None) -> UserProfile:
        try:
            profile = UserProfile(name=name or "", timezone=timezone)
        except ValidationError as e:
            raise OnboardingError("name is required to finish onboarding") from e
        self._profile = profile
        self._persist()
        logger.info("onboarding complete for %s (%s)", profile.name, profile.timezone)
        return profile

    def set_avatar(self, reference: str) -> Optional[UserProfile]:
        if self._profile is None:
            return None
        self._profile = self._profile.model_copy(update={"avatar": reference})
        self._persist()
        return self._profile

    def store_avatar_image(self, data: bytes) -> str:
        digest = hashlib.sha256(data).hexdigest()
        self.blobs_dir.mkdir(parents=True, exist_ok=True)
        p = self.blobs_dir / digest
        if not p.exists():
            p.write_bytes(data)
        return str(p)

    def clear(self) -> None:
        self._profile = None
        self.storage.delete(PROFILE_KEY)
        logger.info("profile cleared")

    def _persist(self) -> None:
        if self._profile is None:
            raise VdeskError("no profile to persist")
        self.storage.set(PROFILE_KEY, self._profile.model_dump())
