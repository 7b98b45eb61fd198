"""
Interactive capture loop.

Enter = capture, q = quit. One simulator, one session, strictly sequential:
the loop blocks on the operator between screenshots.
"""
from dataclasses import dataclass, field
from typing import Callable, Optional

from crit.config import Config
from crit.tools.gitignore import ensure_crit_ignored
from crit.tools.simulator import DeviceController, NoBootedDeviceError, SimctlController, SimulatorError
from .session import Session, SessionStore, capture_filename
from .state import Manifest, new_manifest


QUIT_COMMANDS = ("q", "quit")


@dataclass
class CaptureOutcome:
    session: Session
    captures: list[dict] = field(default_factory=list)
    manifest: Optional[Manifest] = None


# ─────────────────────────────────────────────────────────────
# Progress Display
# ─────────────────────────────────────────────────────────────

def log(message: str) -> None:
    """Print with immediate flush."""
    print(message, flush=True)


def debug(config: Config, message: str) -> None:
    """Print debug message if DEBUG mode enabled."""
    if config.debug:
        print(f"   [DEBUG] {message}", flush=True)


def _read_command(input_fn: Callable[[str], str]) -> Optional[str]:
    """Next operator command, or None when input is closed or interrupted."""
    try:
        return input_fn("Capture: ").strip().lower()
    except (EOFError, KeyboardInterrupt):
        log("")
        return None


# ─────────────────────────────────────────────────────────────
# Capture Flow
# ─────────────────────────────────────────────────────────────

def run_capture(
    config: Config,
    controller: Optional[DeviceController] = None,
    store: Optional[SessionStore] = None,
    input_fn: Callable[[str], str] = input,
) -> CaptureOutcome:
    """
    Capture screenshots into a fresh session.

    Previous sessions are deleted first. The manifest and the `latest`
    pointer are written only if at least one screenshot succeeded.

    Raises:
        NoBootedDeviceError: no simulator is running
    """
    controller = controller or SimctlController()
    store = store or SessionStore(config)

    log("\nChecking simulator...")
    booted = controller.get_booted()
    if booted is None:
        raise NoBootedDeviceError(
            "No simulator running. Please boot a simulator and launch your app."
        )
    log(f"  Found: {booted.name}")

    removed = store.clean_sessions()
    debug(config, f"removed {removed} old session(s)")

    log("\nCreating session...")
    session = store.create_session()
    log(f"  Session: {session.name}")
    ensure_crit_ignored(config.project_dir, config.review_dir_name)

    log("\n" + "=" * 40)
    log("  Enter = capture screenshot")
    log("  q     = quit")
    log("=" * 40 + "\n")

    captures = []
    count = 0

    while True:
        command = _read_command(input_fn)
        if command is None or command in QUIT_COMMANDS:
            break

        # Any other input (including empty Enter) = capture
        filename = capture_filename(count + 1)
        output_path = session.screenshots_dir / filename
        try:
            controller.screenshot(output_path)
        except (SimulatorError, OSError) as e:
            log(f"  ❌ Error: {e}\n")
            continue
        except KeyboardInterrupt:
            # Ctrl+C mid-shot ends the run like q; keep what was taken
            output_path.unlink(missing_ok=True)
            log("")
            break

        count += 1
        captures.append({"filename": filename})
        log(f"  [{count}] {filename}\n")

    if not captures:
        log("\nNo screenshots captured.\n")
        return CaptureOutcome(session=session, captures=captures)

    manifest = new_manifest(
        booted.name,
        [{"image": f"screenshots/{c['filename']}"} for c in captures],
    )

    log("\nGenerating manifest...")
    with store.session_lock(session.name):
        manifest_path = store.write_manifest(session.path, manifest)
        log(f"  Written: {manifest_path}")
        store.update_latest_pointer(session.name)
        log(f"  Updated: {config.review_dir_name}/latest")

    plural = "s" if len(captures) != 1 else ""
    log("\n" + "=" * 40)
    log(f"✅ Captured {len(captures)} screenshot{plural}")
    log("=" * 40 + "\n")

    return CaptureOutcome(session=session, captures=captures, manifest=manifest)
