"""
main.py — EchoVoice application entry point.

Parses CLI args, loads the YAML config, builds the controller and runs it
either behind the FastAPI web server or headless in the terminal.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import sys
import traceback

# ──────────────────────────────────────────────────────────────
# ASCII banner
# ──────────────────────────────────────────────────────────────

_BANNER = r"""
  _____     _        __     __    _
 | ____|___| |__   __\ \   / /__ (_) ___ ___
 |  _| / __| '_ \ / _ \ \ / / _ \| |/ __/ _ \
 | |__| (__| | | | (_) \ V / (_) | | (_|  __/
 |_____\___|_| |_|\___/ \_/ \___/|_|\___\___|

        EchoVoice  v1.0
   Context-aware AAC assistant
"""


# ──────────────────────────────────────────────────────────────
# Argument parsing
# ──────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="echovoice",
        description="EchoVoice — context-aware phrase suggestions and emergency alerts",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument(
        "--config",
        default=None,
        help="Path to echovoice.yaml (default: $ECHOVOICE_CONFIG or config/echovoice.yaml)",
    )
    p.add_argument(
        "--web",
        action="store_true",
        help="Serve the REST / WebSocket API instead of running headless",
    )
    p.add_argument(
        "--host",
        default=None,
        help="Bind address for the web server (overrides server.host)",
    )
    p.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for the web server (overrides server.port)",
    )
    p.add_argument(
        "--no-camera",
        action="store_true",
        help="Disable the emotion and presence detectors",
    )
    p.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARN"],
        default="WARN",
        help="Minimum log level for stderr output",
    )
    return p


# ──────────────────────────────────────────────────────────────
# Entry points
# ──────────────────────────────────────────────────────────────

def _run_web(controller, host: str, port: int) -> int:
    """Run uvicorn in the main thread; the controller lives on its loop."""
    from echovoice.ui.web_app import start_web_server

    print(f"[INFO] API → http://{host}:{port}/state   WebSocket → ws://{host}:{port}/ws")
    print("       Press Ctrl-C to stop.")
    start_web_server(controller, host=host, port=port)
    return 0


async def _run_headless_async(controller) -> None:
    from echovoice.pipeline.controller import ON_ESCALATED, ON_SUGGESTIONS

    def _print_suggestions(data: dict) -> None:
        print(f"\n[{data['source']}] suggestions for {data['context']}")
        for i, s in enumerate(data["suggestions"], 1):
            print(f"  {i}. ({s['priority']:<6}) {s['phrase']}")

    controller.subscribe(ON_SUGGESTIONS, _print_suggestions)
    controller.subscribe(
        ON_ESCALATED,
        lambda data: print(f"[EMERGENCY] {data['outcome']} {data['success_count']}/{data['total_count']}"),
    )
    await controller.start()
    try:
        await asyncio.Event().wait()
    finally:
        await controller.shutdown()


def _run_headless(controller) -> int:
    """Run the controller until Ctrl-C, printing suggestions as they change."""
    try:
        asyncio.run(_run_headless_async(controller))
    except KeyboardInterrupt:
        pass
    return 0


# ──────────────────────────────────────────────────────────────
# Main
# ──────────────────────────────────────────────────────────────

def main() -> int:
    """Application entry point. Returns process exit code."""
    print(_BANNER)

    args = _build_parser().parse_args()

    from echovoice.core.logger import get_logger, set_stderr_level
    set_stderr_level(args.log_level)
    log = get_logger()
    log.info("main", "args_parsed", vars(args))

    from echovoice.core.config import load_config
    from echovoice.core.errors import ConfigError

    try:
        config = load_config(args.config)
    except (ConfigError, FileNotFoundError) as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 2

    if args.no_camera:
        config = dataclasses.replace(
            config, camera=dataclasses.replace(config.camera, enabled=False)
        )

    from echovoice.pipeline.controller import EchoController
    controller = EchoController(config)

    exit_code = 0
    try:
        if args.web:
            exit_code = _run_web(
                controller,
                host=args.host or config.server.host,
                port=args.port or config.server.port,
            )
        else:
            print("[INFO] Running headless — Ctrl-C to stop")
            exit_code = _run_headless(controller)
    except Exception:  # noqa: BLE001
        tb = traceback.format_exc()
        print(tb, file=sys.stderr)
        log.critical("main", "unhandled_exception", {"traceback": tb})
        exit_code = 1
    finally:
        log.flush()

    print(f"[INFO] EchoVoice exited with code {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
