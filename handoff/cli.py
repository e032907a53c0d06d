from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Callable, Dict, Optional

from handoff.clients.api import UploadTokenApi
from handoff.clients.camera import CameraRequest, OpenCVCameraProvider
from handoff.clients.capture import CaptureSession, CaptureState
from handoff.clients.generator import GeneratorSession, GeneratorState
from handoff.config import Settings, get_settings
from handoff.document_types import (
    CITIZEN_DOCUMENT_TYPES,
    REGULATION_DOCUMENT_TYPES,
    DocumentType,
    EntityType,
    format_document_type,
)
from handoff.qr import qr_terminal
from handoff.timing import PollPolicy

_TERMINAL_CAPTURE_STATES = {
    CaptureState.SUCCESS,
    CaptureState.EXPIRED,
    CaptureState.USED,
    CaptureState.ERROR,
}


def _print_json(data: Dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _api_headers(args: argparse.Namespace) -> Dict[str, str]:
    headers: Dict[str, str] = {"Accept": "application/json"}
    if getattr(args, "subscriber", None):
        headers["X-Subscriber-Name"] = args.subscriber
    if getattr(args, "operator", None):
        headers["X-Operator-Id"] = args.operator
    return headers


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "handoff.main:app",
        host=args.host or settings.server_host,
        port=args.port or settings.server_port,
        reload=args.reload,
    )
    return 0


async def _info(args: argparse.Namespace) -> int:
    async with UploadTokenApi(args.api_url, headers=_api_headers(args)) as api:
        info = await api.info(args.hash)
    _print_json(
        {
            "entity_type": info.entity_type,
            "document_type": info.document_type,
            "document_label": format_document_type(info.document_type),
            "subscriber_name": info.subscriber_name,
        }
    )
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    return asyncio.run(_info(args))


async def _status(args: argparse.Namespace) -> int:
    async with UploadTokenApi(args.api_url, headers=_api_headers(args)) as api:
        status = await api.status(args.hash)
    _print_json({"used": status.used, "expired": status.expired})
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    return asyncio.run(_status(args))


async def _generate(args: argparse.Namespace) -> int:
    done = asyncio.Event()
    shown: Dict[str, Any] = {"state": None}

    def on_change(session: GeneratorSession) -> None:
        if session.state != shown["state"]:
            shown["state"] = session.state
            if session.state == GeneratorState.SHOWING_QR and session.link:
                print(qr_terminal(session.link))
                print(f"Link: {session.link}")
                print(f"Documento: {format_document_type(session.selected_type or '')}")
            elif session.state == GeneratorState.EXPIRED:
                print("\nQR code expirado.")
                done.set()
            elif session.state == GeneratorState.SELECT_TYPE and session.error:
                print(f"error: {session.error}", file=sys.stderr)
                done.set()
        if session.state == GeneratorState.SHOWING_QR:
            sys.stdout.write(
                f"\rExpira em {session.time_left}  Última verificação: {session.last_check_text()}   "
            )
            sys.stdout.flush()

    def on_success() -> None:
        print("\nDocumento recebido!")

    settings = get_settings()
    async with UploadTokenApi(args.api_url, headers=_api_headers(args)) as api:
        session = GeneratorSession(
            api,
            entity_type=args.entity_type,
            entity_id=args.entity_id,
            origin=args.origin,
            document_types=tuple(DocumentType),
            poll_policy=PollPolicy(
                initial_delay=args.poll_initial_delay,
                interval=args.poll_interval,
                max_attempts=args.poll_max_attempts,
            ),
            margin_seconds=args.margin,
            tick_seconds=settings.countdown_tick_seconds,
            auto_close_seconds=settings.generator_auto_close_seconds,
            qr_size=settings.qr_image_size,
            on_success=on_success,
            on_close=done.set,
            on_change=on_change,
        )
        session.select_type(args.document_type)
        await session.generate()
        try:
            await done.wait()
        finally:
            await session.aclose()
        if session.state == GeneratorState.SUCCESS:
            return 0
        return 1


def cmd_generate(args: argparse.Namespace) -> int:
    return asyncio.run(_generate(args))


async def _capture(args: argparse.Namespace) -> int:
    provider = OpenCVCameraProvider({args.facing: args.camera_index}, default_index=args.camera_index)
    request = CameraRequest(facing=args.facing, width=args.width, height=args.height)

    async with UploadTokenApi(args.api_url) as api:
        session = CaptureSession(api, args.hash, provider, camera_request=request, jpeg_quality=args.quality)
        try:
            await session.load()
            while session.state not in _TERMINAL_CAPTURE_STATES:
                if session.info is not None:
                    print(f"{session.document_label} para {session.info.subscriber_name}")
                if session.error:
                    print(f"error: {session.error}", file=sys.stderr)
                if session.camera_error:
                    print("Câmera indisponível. [r] tentar novamente, [q] sair")
                elif session.pending is None:
                    print("[c] capturar, [q] sair")
                else:
                    print(f"Foto pronta ({len(session.pending.data)} bytes). [s] enviar, [r] refazer, [q] sair")
                choice = (await asyncio.to_thread(input, "> ")).strip().lower()
                if choice == "q":
                    return 1
                if choice == "c":
                    await session.capture()
                elif choice == "r":
                    await session.retake()
                elif choice == "s":
                    await session.submit()
        finally:
            await session.close()

    title, body = session.message()
    print(title)
    print(body)
    if session.state == CaptureState.SUCCESS:
        _print_json({"document_id": session.document_id})
        return 0
    return 1


def cmd_capture(args: argparse.Namespace) -> int:
    return asyncio.run(_capture(args))


def _add_operator_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--subscriber", help="Subscriber label shown on the phone")
    parser.add_argument("--operator", help="Operator id recorded on the token")


def _margin_type(ttl_seconds: int) -> Callable[[str], float]:
    def parse(value: str) -> float:
        margin = float(value)
        if not 0 <= margin < ttl_seconds:
            raise argparse.ArgumentTypeError(f"margin must be at least 0 and below the {ttl_seconds}s token lifetime")
        return margin

    return parse


def build_parser(settings: Optional[Settings] = None) -> argparse.ArgumentParser:
    settings = settings or get_settings()
    parser = argparse.ArgumentParser(prog="handoff", description="QR code document handoff CLI")
    parser.add_argument("--api-url", default=f"http://127.0.0.1:{settings.server_port}")

    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the token service")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=cmd_serve)

    generate = sub.add_parser("generate", help="Issue a token and show it as a terminal QR code")
    _add_operator_args(generate)
    generate.add_argument("--entity-type", choices=[item.value for item in EntityType], default="CITIZEN")
    generate.add_argument("--entity-id", required=True)
    generate.add_argument(
        "--document-type",
        choices=[item.value for item in (*CITIZEN_DOCUMENT_TYPES, *REGULATION_DOCUMENT_TYPES)],
        required=True,
    )
    generate.add_argument("--origin", default=settings.public_origin, help="Public origin encoded in the QR link")
    generate.add_argument(
        "--margin",
        type=_margin_type(settings.upload_token_ttl_seconds),
        default=float(settings.upload_display_margin_seconds),
    )
    generate.add_argument("--poll-initial-delay", type=float, default=settings.poll_initial_delay_seconds)
    generate.add_argument("--poll-interval", type=float, default=settings.poll_interval_seconds)
    generate.add_argument("--poll-max-attempts", type=int, default=settings.poll_max_attempts)
    generate.set_defaults(func=cmd_generate)

    capture = sub.add_parser("capture", help="Photograph a document and upload it for a token")
    capture.add_argument("hash")
    capture.add_argument("--camera-index", type=int, default=settings.camera_index)
    capture.add_argument("--facing", default=settings.camera_facing)
    capture.add_argument("--width", type=int, default=settings.camera_width)
    capture.add_argument("--height", type=int, default=settings.camera_height)
    capture.add_argument("--quality", type=int, default=settings.capture_jpeg_quality)
    capture.set_defaults(func=cmd_capture)

    info = sub.add_parser("info", help="Show what a token asks for")
    info.add_argument("hash")
    info.set_defaults(func=cmd_info)

    status = sub.add_parser("status", help="Show whether a token was used or expired")
    status.add_argument("hash")
    status.set_defaults(func=cmd_status)

    return parser


def main() -> None:
    try:
        settings = get_settings()
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    parser = build_parser(settings)
    args = parser.parse_args()
    try:
        exit_code = args.func(args)
    except Exception as exc:  # noqa: BLE001
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
