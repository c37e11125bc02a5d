import pytest
from pydantic import ValidationError

from orderstatus.config import Settings


def test_signing_secret_is_required(monkeypatch):
    monkeypatch.delenv("JWT_SECRET", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_short_signing_secret_rejected(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "secret")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_signing_secret_from_environment(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "x" * 32)
    assert Settings(_env_file=None).jwt_secret == "x" * 32
