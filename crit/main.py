"""
Crit - Visual QA for iOS apps

Usage:
    crit capture               Capture screenshots (Enter=capture, q=quit)
    crit serve [--port N]      Review and annotate in browser

Workflow:
    1. Boot your app in iOS Simulator
    2. crit capture
    3. Navigate to screens, press Enter to capture
    4. crit serve - opens browser for review
    5. Click to add pins, type comments, Export
    6. Share .crit/sessions/<name>/feedback.json with your coding agent
"""
import argparse
import signal
import sys
import threading
import webbrowser
from typing import Optional

from crit.config import Config
from crit.orchestrator import SessionStore, run_capture
from crit.tools.simulator import NoBootedDeviceError, SimulatorError


EPILOG = """
Workflow:
  1. Boot your app in iOS Simulator
  2. crit capture
  3. Navigate to screens, press Enter to capture
  4. crit serve - opens browser for review
  5. Click to add pins, type comments, Export
  6. Share feedback.json with your coding agent

Note:
  Always capture before serving. Running capture while
  serve is open requires a page reload.
"""


# ─────────────────────────────────────────────────────────────
# Graceful Shutdown Handler
# ─────────────────────────────────────────────────────────────

def handle_shutdown(signum: Optional[int] = None, frame=None) -> None:
    """Handle SIGTERM/SIGHUP: exit without a traceback."""
    print("\nGoodbye!\n", flush=True)
    sys.exit(0)


def setup_signal_handlers() -> None:
    signal.signal(signal.SIGTERM, handle_shutdown)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, handle_shutdown)


# ─────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────

def cmd_capture(config: Config) -> int:
    try:
        run_capture(config)
    except NoBootedDeviceError as e:
        print(f"  ❌ {e}")
        print("  Then run this command again.\n")
        return 1
    except SimulatorError as e:
        print(f"\n❌ Error: {e}\n")
        return 1

    print('Run "crit serve" to review the captured screenshots.\n')
    return 0


def open_browser_later(url: str, delay: float = 0.5) -> threading.Timer:
    """Open the review UI once the server has had a moment to bind."""
    def _open():
        if not webbrowser.open(url):
            print(f"Open in browser: {url}", flush=True)

    timer = threading.Timer(delay, _open)
    timer.daemon = True
    timer.start()
    return timer


def cmd_serve(config: Config) -> int:
    from crit.backend import run_server

    if not SessionStore(config).list_sessions():
        print("\nNo capture sessions found.")
        print('Run "crit capture" first to capture screenshots.\n')
        return 1

    if config.open_browser:
        open_browser_later(config.url)

    try:
        run_server(config)
    except KeyboardInterrupt:
        print("\nGoodbye!\n")
    return 0


# ─────────────────────────────────────────────────────────────
# Main Entry Point
# ─────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crit",
        description="Crit - Visual QA for iOS apps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("capture", help="Capture screenshots (Enter=capture, q=quit)")

    serve = subparsers.add_parser("serve", help="Review and annotate in browser")
    serve.add_argument(
        "--port",
        type=int,
        help="Server port (default: $PORT or 3847)"
    )
    serve.add_argument(
        "--no-open",
        action="store_true",
        help="Don't open a browser window"
    )
    return parser


def main(argv: Optional[list] = None) -> int:
    """Main entry point with CLI argument parsing."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    setup_signal_handlers()

    if args.command == "capture":
        return cmd_capture(Config.from_env())

    config = Config.from_env(port=args.port, open_browser=not args.no_open)
    return cmd_serve(config)


if __name__ == "__main__":
    sys.exit(main())
