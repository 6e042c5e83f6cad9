"""Config loader for a vdesk session.

Settings live in a YAML mapping. Every key is optional; environment
variables prefixed with ``VDESK_`` override the file.

    storage_path: ~/.vdesk/storage.json
    reply:
      endpoint: https://api.openai.com/v1/chat/completions
      model: gpt-4o-mini
      api_key_env: OPENAI_API_KEY
      timeout_sec: 30
    rps_score_scope: session
    max_windows: 12
    contacts:
      rebecca: You are Rebecca, a cheerful friend...
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from .errors import ConfigError


DEFAULT_STORAGE_PATH = "~/.vdesk/storage.json"
DEFAULT_REPLY_TIMEOUT = 30.0
DEFAULT_CONTACT = "rebecca"
DEFAULT_PERSONAS = {
    "rebecca": (
        "You are Rebecca, a warm and curious friend chatting inside a small "
        "virtual desktop. Keep replies short and conversational. "
        "You are talking to {name}, whose local timezone is {timezone}."
    ),
}

FIELD_TYPES = {
    "storage_path": str,
    "reply": dict,
    "rps_score_scope": str,
    "max_windows": int,
    "contacts": dict,
    "event_log_path": str,
    "host": str,
    "port": int,
}
REPLY_FIELD_TYPES = {
    "endpoint": str,
    "model": str,
    "api_key_env": str,
    "timeout_sec": (int, float),
}
VALID_SCORE_SCOPES = {"session", "window"}

ENV_OVERRIDES = {
    "VDESK_STORAGE_PATH": "storage_path",
    "VDESK_REPLY_ENDPOINT": "reply.endpoint",
    "VDESK_REPLY_MODEL": "reply.model",
    "VDESK_REPLY_API_KEY_ENV": "reply.api_key_env",
    "VDESK_REPLY_TIMEOUT": "reply.timeout_sec",
    "VDESK_RPS_SCORE_SCOPE": "rps_score_scope",
    "VDESK_MAX_WINDOWS": "max_windows",
    "VDESK_EVENT_LOG_PATH": "event_log_path",
    "VDESK_HOST": "host",
    "VDESK_PORT": "port",
}
_NUMERIC_KEYS = {"reply.timeout_sec": float, "max_windows": int, "port": int}


@dataclass
class ReplyConfig:
    endpoint: str = ""
    model: str = "gpt-4o-mini"
    api_key_env: str = "OPENAI_API_KEY"
    timeout_sec: float = DEFAULT_REPLY_TIMEOUT


@dataclass
class DeskConfig:
    """Parsed session configuration."""

    storage_path: Path = field(default_factory=lambda: Path(DEFAULT_STORAGE_PATH).expanduser())
    reply: ReplyConfig = field(default_factory=ReplyConfig)
    rps_score_scope: str = "session"
    max_windows: Optional[int] = None
    contacts: dict = field(default_factory=lambda: dict(DEFAULT_PERSONAS))
    event_log_path: Optional[Path] = None
    host: str = "127.0.0.1"
    port: int = 8089
    source_path: Optional[Path] = None

    @property
    def default_contact(self) -> str:
        if DEFAULT_CONTACT in self.contacts:
            return DEFAULT_CONTACT
        return next(iter(self.contacts), DEFAULT_CONTACT)


def validate_config(raw: dict) -> list[str]:
    """Validate a raw config mapping. Returns list of error strings."""
    errors = []

    for key, expected_type in FIELD_TYPES.items():
        if key in raw and raw[key] is not None and not isinstance(raw[key], expected_type):
            errors.append(
                f"Field '{key}' must be {expected_type.__name__}, "
                f"got {type(raw[key]).__name__}"
            )

    reply = raw.get("reply")
    if isinstance(reply, dict):
        for key, expected in REPLY_FIELD_TYPES.items():
            if key in reply and not isinstance(reply[key], expected):
                errors.append(f"Field 'reply.{key}' has wrong type {type(reply[key]).__name__}")
        timeout = reply.get("timeout_sec")
        if isinstance(timeout, (int, float)) and timeout <= 0:
            errors.append(f"reply.timeout_sec must be > 0, got {timeout}")

    scope = raw.get("rps_score_scope")
    if scope is not None and scope not in VALID_SCORE_SCOPES:
        errors.append(f"rps_score_scope must be one of {sorted(VALID_SCORE_SCOPES)}, got '{scope}'")

    max_windows = raw.get("max_windows")
    if isinstance(max_windows, int) and max_windows < 1:
        errors.append(f"max_windows must be >= 1, got {max_windows}")

    port = raw.get("port")
    if isinstance(port, int) and not (1 <= port <= 65535):
        errors.append(f"port must be 1-65535, got {port}")

    contacts = raw.get("contacts")
    if isinstance(contacts, dict):
        if not contacts:
            errors.append("contacts must not be empty")
        for contact, persona in contacts.items():
            if not isinstance(persona, str) or not persona.strip():
                errors.append(f"contact '{contact}' needs a non-empty persona string")

    return errors


def apply_env_overrides(raw: dict, environ: Optional[dict] = None) -> dict:
    env = os.environ if environ is None else environ
    merged = dict(raw)
    merged["reply"] = dict(raw.get("reply") or {})
    for var, dotted in ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value == "":
            continue
        cast = _NUMERIC_KEYS.get(dotted)
        if cast is not None:
            try:
                value = cast(value)
            except ValueError:
                raise ConfigError(f"{var} must be numeric, got '{value}'")
        if dotted.startswith("reply."):
            merged["reply"][dotted.split(".", 1)[1]] = value
        else:
            merged[dotted] = value
    return merged


def build_config(raw: dict, source_path: Optional[Path] = None) -> DeskConfig:
    errors = validate_config(raw)
    if errors:
        where = f" {source_path}" if source_path else ""
        raise ConfigError(f"Invalid config{where}:\n" + "\n".join(f"  - {e}" for e in errors))

    reply_raw = raw.get("reply") or {}
    reply = ReplyConfig(
        endpoint=reply_raw.get("endpoint", ""),
        model=reply_raw.get("model", "gpt-4o-mini"),
        api_key_env=reply_raw.get("api_key_env", "OPENAI_API_KEY"),
        timeout_sec=float(reply_raw.get("timeout_sec", DEFAULT_REPLY_TIMEOUT)),
    )
    event_log = raw.get("event_log_path")
    return DeskConfig(
        storage_path=Path(raw.get("storage_path") or DEFAULT_STORAGE_PATH).expanduser(),
        reply=reply,
        rps_score_scope=raw.get("rps_score_scope") or "session",
        max_windows=raw.get("max_windows"),
        contacts=dict(raw.get("contacts") or DEFAULT_PERSONAS),
        event_log_path=Path(event_log).expanduser() if event_log else None,
        host=raw.get("host") or "127.0.0.1",
        port=raw.get("port") or 8089,
        source_path=source_path,
    )


def load_config(path: Optional[Path] = None, environ: Optional[dict] = None) -> DeskConfig:
    """Load config from ``path`` (or ``$VDESK_CONFIG``). Raises ConfigError on invalid config."""
    env = os.environ if environ is None else environ
    if path is None and env.get("VDESK_CONFIG"):
        path = Path(env["VDESK_CONFIG"])

    raw: dict = {}
    if path is not None:
        try:
            loaded = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config {path}: {e}")
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError("Config must be a YAML mapping")
        raw = loaded or {}

    return build_config(apply_env_overrides(raw, env), source_path=path)
