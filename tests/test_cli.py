from typing import Iterator

import pytest

from handoff.cli import build_parser, cmd_capture, cmd_generate, cmd_serve
from handoff.config import get_settings


@pytest.fixture
def fresh_settings() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_generate_arguments() -> None:
    args = build_parser().parse_args(
        ["generate", "--entity-id", "4821", "--document-type", "RG", "--subscriber", "UBS Centro"]
    )
    assert args.func is cmd_generate
    assert args.entity_type == "CITIZEN"
    assert args.margin == 180.0
    assert args.poll_max_attempts == 10
    assert args.subscriber == "UBS Centro"
    assert args.api_url == "http://127.0.0.1:8000"
    assert args.origin == get_settings().public_origin


def test_generate_rejects_unknown_document_type() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["generate", "--entity-id", "1", "--document-type", "PASSPORT"])


@pytest.mark.parametrize("margin", ["780", "900", "-1"])
def test_generate_rejects_margin_outside_token_lifetime(margin: str) -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(
            ["generate", "--entity-id", "1", "--document-type", "RG", "--margin", margin]
        )


def test_generate_accepts_margin_below_token_lifetime() -> None:
    args = build_parser().parse_args(
        ["generate", "--entity-id", "1", "--document-type", "RG", "--margin", "60"]
    )
    assert args.margin == 60.0


def test_defaults_follow_environment(fresh_settings: None, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PUBLIC_ORIGIN", "https://handoff.example.org")
    monkeypatch.setenv("UPLOAD_DISPLAY_MARGIN_SECONDS", "120")
    monkeypatch.setenv("POLL_INITIAL_DELAY_SECONDS", "2")
    monkeypatch.setenv("POLL_INTERVAL_SECONDS", "15")
    monkeypatch.setenv("POLL_MAX_ATTEMPTS", "4")
    monkeypatch.setenv("CAMERA_INDEX", "2")
    monkeypatch.setenv("CAMERA_FACING", "user")
    monkeypatch.setenv("CAMERA_WIDTH", "1280")
    monkeypatch.setenv("CAMERA_HEIGHT", "720")
    monkeypatch.setenv("CAPTURE_JPEG_QUALITY", "75")
    monkeypatch.setenv("SERVER_PORT", "9100")
    parser = build_parser()

    generate = parser.parse_args(["generate", "--entity-id", "1", "--document-type", "RG"])
    assert generate.origin == "https://handoff.example.org"
    assert generate.margin == 120.0
    assert generate.poll_initial_delay == 2.0
    assert generate.poll_interval == 15.0
    assert generate.poll_max_attempts == 4
    assert generate.api_url == "http://127.0.0.1:9100"

    capture = parser.parse_args(["capture", "abc"])
    assert capture.camera_index == 2
    assert capture.facing == "user"
    assert (capture.width, capture.height, capture.quality) == (1280, 720, 75)


def test_margin_limit_follows_token_lifetime(fresh_settings: None, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("UPLOAD_TOKEN_TTL_SECONDS", "300")
    monkeypatch.setenv("UPLOAD_DISPLAY_MARGIN_SECONDS", "60")
    parser = build_parser()

    with pytest.raises(SystemExit):
        parser.parse_args(["generate", "--entity-id", "1", "--document-type", "RG", "--margin", "300"])
    args = parser.parse_args(["generate", "--entity-id", "1", "--document-type", "RG", "--margin", "299"])
    assert args.margin == 299.0


def test_capture_defaults_to_rear_camera() -> None:
    args = build_parser().parse_args(["--api-url", "http://10.0.0.5:8000", "capture", "abc"])
    assert args.func is cmd_capture
    assert args.hash == "abc"
    assert args.facing == "environment"
    assert (args.width, args.height, args.quality) == (1920, 1080, 90)
    assert args.api_url == "http://10.0.0.5:8000"


def test_serve_arguments() -> None:
    args = build_parser().parse_args(["serve", "--port", "9000"])
    assert args.func is cmd_serve
    assert args.port == 9000
    assert args.host is None
