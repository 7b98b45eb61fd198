"""
iOS Simulator access through xcrun simctl.

Only what crit needs:
  - List devices and find the booted one
  - Capture a screenshot of the booted device

Anything that can drive a device (tests use a fake) satisfies the
DeviceController protocol.
"""
import json
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol


# Suppress MallocStackLogging warnings from child processes
_SUBPROCESS_ENV = os.environ.copy()
_SUBPROCESS_ENV["MallocStackLogging"] = "0"
_SUBPROCESS_ENV["MallocStackLoggingNoCompact"] = "0"

_RUNTIME_PREFIX = "com.apple.CoreSimulator.SimRuntime."


class SimulatorError(RuntimeError):
    """A simctl invocation failed or returned something unusable."""


class NoBootedDeviceError(SimulatorError):
    def __init__(self, message: str = "No booted simulator found"):
        super().__init__(message)


@dataclass
class Device:
    """A simulator as reported by `simctl list`."""
    name: str
    udid: str
    state: str
    runtime: str = ""

    @property
    def is_booted(self) -> bool:
        return self.state == "Booted"


class DeviceController(Protocol):
    def list_devices(self) -> list[Device]: ...

    def get_booted(self) -> Optional[Device]: ...

    def screenshot(self, path: Path) -> Path: ...


# ═══════════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _run(cmd: list, timeout: int = 30) -> tuple[int, str, str]:
    """Run command, return (returncode, stdout, stderr)."""
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=_SUBPROCESS_ENV  # Suppresses MallocStackLogging warnings
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, "", f"Command timed out after {timeout}s"
    except OSError as e:
        return -1, "", str(e)


def _run_simctl(args: list, timeout: int = 30) -> tuple[int, str, str]:
    """Run xcrun simctl command."""
    return _run(["xcrun", "simctl"] + args, timeout)


def parse_device_list(payload: str) -> list[Device]:
    """
    Flatten `simctl list --json devices` output into Device records.

    Runtime keys look like com.apple.CoreSimulator.SimRuntime.iOS-17-2;
    the prefix is dropped.
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise SimulatorError(f"Failed to list simulators: {e}") from e

    devices = []
    for runtime, sims in data.get("devices", {}).items():
        for sim in sims:
            devices.append(Device(
                name=sim.get("name", ""),
                udid=sim.get("udid", ""),
                state=sim.get("state", ""),
                runtime=runtime.replace(_RUNTIME_PREFIX, ""),
            ))
    return devices


# ═══════════════════════════════════════════════════════════════════════════════
# SIMCTL CONTROLLER
# ═══════════════════════════════════════════════════════════════════════════════

class SimctlController:
    """DeviceController backed by the Xcode command line tools."""

    def __init__(self, timeout: int = 30):
        self.timeout = timeout

    def list_devices(self) -> list[Device]:
        code, stdout, stderr = _run_simctl(["list", "--json", "devices"], self.timeout)
        if code != 0:
            raise SimulatorError(f"Failed to list simulators: {stderr.strip() or 'simctl failed'}")
        return parse_device_list(stdout)

    def get_booted(self) -> Optional[Device]:
        for device in self.list_devices():
            if device.is_booted:
                return device
        return None

    def screenshot(self, path: Path) -> Path:
        """
        Capture the booted simulator's screen to `path`.

        Raises:
            SimulatorError: simctl failed or produced no file
        """
        path = Path(path)
        code, _, stderr = _run_simctl(["io", "booted", "screenshot", str(path)], self.timeout)
        if code != 0:
            raise SimulatorError(f"Failed to take screenshot: {stderr.strip() or 'simctl failed'}")
        if not path.exists():
            raise SimulatorError(f"Failed to take screenshot: {path} was not created")
        return path
