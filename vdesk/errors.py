"""Exception types raised inside the session core."""

from __future__ import annotations

import enum


class VdeskError(Exception):
    pass


class FailureKind(str, enum.Enum):
    missing_credential = "missing_credential"
    unreachable = "unreachable"
    bad_status = "bad_status"
    malformed = "malformed"
    timeout = "timeout"


class ReplyError(VdeskError):
    """The reply collaborator could not produce a reply."""

    def __init__(self, kind: FailureKind, detail: str = "") -> None:
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail


class OnboardingError(VdeskError, ValueError):
    pass


class WindowLimitReached(VdeskError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"window limit reached ({limit})")
        self.limit = limit


class ConfigError(VdeskError, ValueError):
    pass
