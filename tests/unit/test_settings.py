import pytest
from pydantic import ValidationError

from matrix_sync.config.settings import Settings

OPTIONAL_ENV = (
    "MATRIX_PASSWORD",
    "MATRIX_HOMESERVER_URL",
    "MATRIX_DEFAULT_DOMAIN",
    "MATRIX_DEVICE_ID",
    "MATRIX_SYNC_TIMEOUT_MS",
    "MATRIX_SYNC_GRACE_SECONDS",
    "MATRIX_SYNC_BACKOFF_CAP_SECONDS",
    "MATRIX_SYNC_FULL_STATE",
    "MATRIX_SYNC_SET_PRESENCE",
    "MATRIX_REQUEST_TIMEOUT_SECONDS",
    "MATRIX_SYNCHRONOUS_REQUESTS",
    "DATABASE_URL",
    "LOG_LEVEL",
)


def _set_required_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MATRIX_USER_ID", "@alice")
    for key in OPTIONAL_ENV:
        monkeypatch.delenv(key, raising=False)


def test_required_env_var_missing_raises_validation_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _set_required_env(monkeypatch)
    monkeypatch.delenv("MATRIX_USER_ID", raising=False)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_defaults_are_deterministic(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_required_env(monkeypatch)

    settings = Settings(_env_file=None)

    assert settings.matrix_user_id == "@alice"
    assert settings.matrix_password is None
    assert settings.matrix_homeserver_url is None
    assert settings.matrix_default_domain == "matrix.org"
    assert settings.matrix_sync_timeout_ms == 30_000
    assert settings.matrix_sync_grace_seconds == 5.0
    assert settings.matrix_sync_backoff_cap_seconds == 60.0
    assert settings.matrix_sync_full_state is False
    assert settings.matrix_sync_set_presence is None
    assert settings.matrix_request_timeout_seconds == 30.0
    assert settings.matrix_synchronous_requests is False
    assert settings.database_url is None
    assert settings.log_level == "INFO"


def test_env_values_override_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_required_env(monkeypatch)
    monkeypatch.setenv("MATRIX_HOMESERVER_URL", "https://matrix.example.org")
    monkeypatch.setenv("MATRIX_SYNC_TIMEOUT_MS", "10000")
    monkeypatch.setenv("MATRIX_SYNC_SET_PRESENCE", "offline")
    monkeypatch.setenv("MATRIX_SYNCHRONOUS_REQUESTS", "true")
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./matrix_sync.db")

    settings = Settings(_env_file=None)

    assert str(settings.matrix_homeserver_url) == "https://matrix.example.org/"
    assert settings.matrix_sync_timeout_ms == 10_000
    assert settings.matrix_sync_set_presence == "offline"
    assert settings.matrix_synchronous_requests is True
    assert settings.database_url == "sqlite+aiosqlite:///./matrix_sync.db"


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("MATRIX_SYNC_TIMEOUT_MS", "0"),
        ("MATRIX_SYNC_GRACE_SECONDS", "-1"),
        ("MATRIX_SYNC_BACKOFF_CAP_SECONDS", "0"),
        ("MATRIX_SYNC_SET_PRESENCE", "busy"),
        ("MATRIX_HOMESERVER_URL", "not-a-url"),
    ],
)
def test_invalid_values_are_rejected(
    monkeypatch: pytest.MonkeyPatch,
    key: str,
    value: str,
) -> None:
    _set_required_env(monkeypatch)
    monkeypatch.setenv(key, value)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)
