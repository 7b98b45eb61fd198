"""
Shared test fixtures.

Provides: a Config rooted in tmp_path, a SessionStore over it, and a fake
simulator that writes tiny PNG files instead of calling xcrun.
"""
from pathlib import Path
from typing import Optional

import pytest

from crit.config import Config
from crit.orchestrator.session import SessionStore
from crit.tools.simulator import Device, SimulatorError


PNG_BYTES = (
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01"
    b"\x08\x06\x00\x00\x00\x1f\x15\xc4\x89\x00\x00\x00\rIDATx\x9cc\xf8\x0f"
    b"\x00\x00\x01\x01\x00\x05\x18\xd8N\x00\x00\x00\x00IEND\xaeB`\x82"
)


class FakeController:
    """DeviceController stand-in. `fail_next` makes the next N screenshots fail."""

    def __init__(self, booted: Optional[Device] = None):
        self.booted = booted
        self.fail_next = 0
        self.shots: list[Path] = []

    def list_devices(self) -> list[Device]:
        return [self.booted] if self.booted else []

    def get_booted(self) -> Optional[Device]:
        return self.booted

    def screenshot(self, path: Path) -> Path:
        if self.fail_next:
            self.fail_next -= 1
            raise SimulatorError("Failed to take screenshot: device busy")
        path = Path(path)
        path.write_bytes(PNG_BYTES)
        self.shots.append(path)
        return path


@pytest.fixture
def device():
    return Device(name="iPhone 15 Pro", udid="ABC-123", state="Booted", runtime="iOS-17-2")


@pytest.fixture
def controller(device):
    return FakeController(booted=device)


@pytest.fixture
def config(tmp_path):
    return Config(project_dir=tmp_path, stop_delay=0.0)


@pytest.fixture
def store(config):
    return SessionStore(config)


@pytest.fixture
def scripted_input():
    """Build an input() replacement that replays the given lines."""
    def factory(*lines):
        remaining = list(lines)

        def _input(prompt=""):
            if not remaining:
                raise EOFError
            return remaining.pop(0)
        return _input
    return factory
