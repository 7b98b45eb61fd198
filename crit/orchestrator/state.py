"""Document shapes persisted inside a session directory."""
from datetime import datetime, timezone
from typing import Optional
from typing_extensions import NotRequired, TypedDict


class Pin(TypedDict):
    """A numbered reviewer comment placed on a screenshot."""
    number: int
    comment: str
    x: float                            # percent from left, 0-100
    y: float                            # percent from top, 0-100
    reference: NotRequired[str]         # e.g., "references/ref-1.png"


class Capture(TypedDict):
    image: str                          # e.g., "screenshots/001.png"
    annotated: NotRequired[str]         # e.g., "annotated/001.png"
    pins: NotRequired[list[Pin]]


class Manifest(TypedDict):
    """manifest.json - capture order is display order."""
    capturedAt: Optional[str]
    device: NotRequired[str]
    captures: list[Capture]


EMPTY_MANIFEST: Manifest = {"capturedAt": None, "captures": []}
EMPTY_CRITIQUE: dict = {"captures": {}}


def now_iso() -> str:
    """UTC timestamp like 2026-10-17T07:24:00.123Z."""
    stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def new_manifest(device: str, captures: Optional[list[Capture]] = None) -> Manifest:
    return {
        "capturedAt": now_iso(),
        "device": device,
        "captures": list(captures or []),
    }
