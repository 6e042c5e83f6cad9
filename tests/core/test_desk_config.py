"""Tests for the session config loader."""

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from vdesk.config import (
    DEFAULT_PERSONAS,
    DEFAULT_REPLY_TIMEOUT,
    apply_env_overrides,
    load_config,
    validate_config,
)
from vdesk.errors import ConfigError

VALID_CONFIG = """\
storage_path: {storage}
reply:
  endpoint: http://localhost:9999/v1/chat/completions
  model: tiny-model
  api_key_env: TEST_KEY
  timeout_sec: 5
rps_score_scope: window
max_windows: 6
contacts:
  rebecca: You are Rebecca.
  sam: You are Sam.
"""


def write(tmp_path: Path, text: str) -> Path:
    p = tmp_path / "vdesk.yaml"
    p.write_text(text, encoding="utf-8")
    return p


class TestLoadConfig:
    def test_defaults_without_file(self):
        cfg = load_config(None, environ={})
        assert cfg.reply.timeout_sec == DEFAULT_REPLY_TIMEOUT
        assert cfg.rps_score_scope == "session"
        assert cfg.max_windows is None
        assert cfg.contacts == DEFAULT_PERSONAS
        assert cfg.default_contact == "rebecca"

    def test_full_file(self, tmp_path):
        path = write(tmp_path, VALID_CONFIG.format(storage=tmp_path / "s.json"))
        cfg = load_config(path, environ={})
        assert cfg.storage_path == tmp_path / "s.json"
        assert cfg.reply.endpoint.endswith("/chat/completions")
        assert cfg.reply.model == "tiny-model"
        assert cfg.reply.api_key_env == "TEST_KEY"
        assert cfg.reply.timeout_sec == 5.0
        assert cfg.rps_score_scope == "window"
        assert cfg.max_windows == 6
        assert set(cfg.contacts) == {"rebecca", "sam"}
        assert cfg.source_path == path

    def test_path_from_env(self, tmp_path):
        path = write(tmp_path, "max_windows: 3\n")
        cfg = load_config(environ={"VDESK_CONFIG": str(path)})
        assert cfg.max_windows == 3

    def test_env_overrides_file(self, tmp_path):
        path = write(tmp_path, VALID_CONFIG.format(storage=tmp_path / "s.json"))
        cfg = load_config(path, environ={"VDESK_REPLY_TIMEOUT": "12.5", "VDESK_RPS_SCORE_SCOPE": "session"})
        assert cfg.reply.timeout_sec == 12.5
        assert cfg.rps_score_scope == "session"

    def test_empty_file_is_defaults(self, tmp_path):
        cfg = load_config(write(tmp_path, ""), environ={})
        assert cfg.port == 8089

    def test_non_mapping_rejected(self, tmp_path):
        with pytest.raises(ConfigError, match="mapping"):
            load_config(write(tmp_path, "- a\n- b\n"), environ={})

    def test_bad_yaml_rejected(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(write(tmp_path, "reply: [unclosed\n"), environ={})

    def test_invalid_values_listed(self, tmp_path):
        path = write(tmp_path, "rps_score_scope: forever\nmax_windows: 0\n")
        with pytest.raises(ConfigError) as exc:
            load_config(path, environ={})
        assert "rps_score_scope" in str(exc.value)
        assert "max_windows" in str(exc.value)


class TestValidateConfig:
    def test_valid_has_no_errors(self):
        assert validate_config({"max_windows": 2, "reply": {"timeout_sec": 1}}) == []

    def test_wrong_types(self):
        errors = validate_config({"max_windows": "many", "contacts": []})
        assert any("max_windows" in e for e in errors)
        assert any("contacts" in e for e in errors)

    def test_non_positive_timeout(self):
        errors = validate_config({"reply": {"timeout_sec": 0}})
        assert any("timeout_sec" in e for e in errors)

    def test_blank_persona(self):
        errors = validate_config({"contacts": {"rebecca": "  "}})
        assert any("rebecca" in e for e in errors)

    def test_port_range(self):
        assert validate_config({"port": 70000})


def test_non_numeric_env_override_rejected():
    with pytest.raises(ConfigError):
        apply_env_overrides({}, {"VDESK_MAX_WINDOWS": "lots"})
