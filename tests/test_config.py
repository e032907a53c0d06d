import pytest
from pydantic import ValidationError

from handoff.config import DEFAULT_SUBSCRIBER_NAME, Settings

DB_URL = "sqlite+aiosqlite:///./data/test.db"


def test_defaults_match_handoff_timing() -> None:
    settings = Settings(database_url=DB_URL, _env_file=None)
    assert settings.upload_token_ttl_seconds == 780
    assert settings.upload_display_margin_seconds == 180
    assert settings.poll_initial_delay_seconds == 5.0
    assert settings.poll_interval_seconds == 60.0
    assert settings.poll_max_attempts == 10


def test_database_url_is_required(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(ValidationError):
        Settings(database_url="", _env_file=None)


def test_margin_must_fit_inside_ttl() -> None:
    with pytest.raises(ValidationError):
        Settings(
            database_url=DB_URL,
            upload_token_ttl_seconds=120,
            upload_display_margin_seconds=120,
            _env_file=None,
        )
    with pytest.raises(ValidationError):
        Settings(database_url=DB_URL, upload_display_margin_seconds=-1, _env_file=None)


def test_production_requires_real_subscriber_and_https() -> None:
    with pytest.raises(ValidationError):
        Settings(
            database_url=DB_URL,
            app_env="prod",
            subscriber_name=DEFAULT_SUBSCRIBER_NAME,
            public_origin="https://app.example.org",
            _env_file=None,
        )
    with pytest.raises(ValidationError):
        Settings(
            database_url=DB_URL,
            app_env="production",
            subscriber_name="Prefeitura",
            public_origin="http://app.example.org",
            _env_file=None,
        )
    settings = Settings(
        database_url=DB_URL,
        app_env="prod",
        subscriber_name="Prefeitura",
        public_origin="https://app.example.org",
        _env_file=None,
    )
    assert settings.subscriber_name == "Prefeitura"
