"""
Integrations with the outside world: the simulator and git.
"""
from .simulator import (
    Device,
    DeviceController,
    SimctlController,
    SimulatorError,
    NoBootedDeviceError,
)
from .gitignore import ensure_crit_ignored

__all__ = [
    "Device",
    "DeviceController",
    "SimctlController",
    "SimulatorError",
    "NoBootedDeviceError",
    "ensure_crit_ignored",
]
