import base64
import importlib
import importlib.util
import json
import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app.auth import create_access_token, parse_bearer_token, verify_access_token

SCRIPTS_DIR = Path(__file__).resolve().parents[1] / "scripts"


def _load_script(name: str):
    spec = importlib.util.spec_from_file_location(name, SCRIPTS_DIR / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_auth_ttl_invalid_env_falls_back(monkeypatch):
    monkeypatch.setenv("AUTH_TOKEN_TTL_HOURS", "not-a-number")
    monkeypatch.delitem(sys.modules, "app.auth")
    auth = importlib.import_module("app.auth")
    assert auth.TOKEN_TTL_HOURS == 24


def test_auth_ttl_non_positive_env_falls_back(monkeypatch):
    monkeypatch.setenv("AUTH_TOKEN_TTL_HOURS", "0")
    monkeypatch.delitem(sys.modules, "app.auth")
    auth = importlib.import_module("app.auth")
    assert auth.TOKEN_TTL_HOURS == 24


def test_config_invalid_env_falls_back(monkeypatch):
    monkeypatch.setenv("PLATFORM_FEE_PERCENTAGE", "ten percent")
    monkeypatch.setenv("DEFAULT_CONFLICT_SCOPE", "galaxy")
    monkeypatch.setenv("ALTERNATIVE_EXPIRY_HOURS", "-5")
    monkeypatch.setenv("DEFAULT_CURRENCY", " eur ")
    monkeypatch.delitem(sys.modules, "app.config")
    config = importlib.import_module("app.config")

    assert config.PLATFORM_FEE_PERCENTAGE == 0.10
    assert config.DEFAULT_CONFLICT_SCOPE == "service"
    assert config.ALTERNATIVE_EXPIRY_HOURS == 24
    assert config.DEFAULT_CURRENCY == "EUR"


def test_config_fee_out_of_range_falls_back(monkeypatch):
    monkeypatch.setenv("PLATFORM_FEE_PERCENTAGE", "1.5")
    monkeypatch.delitem(sys.modules, "app.config")
    config = importlib.import_module("app.config")
    assert config.PLATFORM_FEE_PERCENTAGE == 0.10


def test_tampered_token_is_rejected():
    token, _ = create_access_token("user_1", role="customer")
    payload_part, sig_part = token.split(".", 1)
    forged_payload = base64.urlsafe_b64encode(b"user_1|vendor|9999999999").decode("utf-8").rstrip("=")

    assert verify_access_token(token).role == "customer"
    assert verify_access_token(f"{forged_payload}.{sig_part}") is None
    assert verify_access_token("garbage") is None
    assert verify_access_token("%%%.%%%") is None


def test_unknown_role_cannot_be_issued():
    with pytest.raises(ValueError):
        create_access_token("user_1", role="admin")


def test_bearer_header_parsing():
    assert parse_bearer_token("Bearer abc") == "abc"
    assert parse_bearer_token("bearer  abc ") == "abc"
    assert parse_bearer_token("Basic abc") is None
    assert parse_bearer_token("Bearer ") is None
    assert parse_bearer_token(None) is None


def test_expiry_script_reports_json(capsys):
    script = _load_script("expire_alternatives")

    exit_code = script.main(["--json", "--now", "2000-01-01T00:00:00+00:00"])

    assert exit_code == 0
    report = json.loads(capsys.readouterr().out)
    assert report == {"count": 0, "expired": []}


def test_expiry_script_rejects_bad_timestamp():
    script = _load_script("expire_alternatives")
    with pytest.raises(SystemExit) as excinfo:
        script.main(["--now", "yesterday"])
    assert excinfo.value.code == 2
