"""
Session store: owns the .crit directory layout.

    <root>/latest                          "sessions/<name>"
    <root>/AGENTS.md                       context for coding agents
    <root>/sessions/<name>/manifest.json
    <root>/sessions/<name>/screenshots/NNN.png
    <root>/sessions/<name>/feedback.json
    <root>/sessions/<name>/critique.json
    <root>/sessions/<name>/annotated/<file>
    <root>/sessions/<name>/references/<file>

The capture loop and the review server both go through SessionStore and
never build session paths themselves. Manifest writes always precede the
pointer update, so `latest` never names a session whose manifest is missing
a write that was meant to make it active.
"""
import json
import os
import re
import shutil
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from crit.config import Config
from .state import Capture, Manifest, new_manifest


MANIFEST_FILE = "manifest.json"
FEEDBACK_FILE = "feedback.json"
CRITIQUE_FILE = "critique.json"
AGENTS_FILE = "AGENTS.md"

_ORDINAL_RE = re.compile(r"^(\d+)\.png$")


class SessionStoreError(Exception):
    """Base class for session store failures."""


class NoSessionError(SessionStoreError):
    def __init__(self, message: str = "No session found"):
        super().__init__(message)


class CaptureIndexError(SessionStoreError):
    """Capture index outside the manifest."""


class InvalidFilenameError(SessionStoreError):
    """Asset filename is not a bare file name."""


class CorruptDocumentError(SessionStoreError):
    """A JSON document in the session exists but cannot be parsed."""


@dataclass
class Session:
    """Handle to one session directory."""
    name: str
    path: Path
    screenshots_dir: Path
    review_root: Path

    @property
    def manifest_path(self) -> Path:
        return self.path / MANIFEST_FILE


AGENT_CONTEXT = """# Crit UI Review Feedback

This directory contains UI review data captured from the iOS Simulator using Crit.

## Structure

- `latest` - points to the most recent session
- `sessions/{timestamp}/manifest.json` - lists all captured screenshots
- `sessions/{timestamp}/screenshots/` - raw simulator screenshots
- `sessions/{timestamp}/feedback.json` - exported review comments (created after export)
- `sessions/{timestamp}/annotated/` - screenshots with numbered pins overlaid
- `sessions/{timestamp}/references/` - reference images attached to comments

## How to read feedback.json

Each entry in `captures` represents a screenshot with feedback:

- `image` - the screenshot filename
- `annotated` - same screenshot with numbered pins showing comment locations
- `pins` - array of feedback items:
  - `number` - pin number matching the annotated screenshot
  - `comment` - what the reviewer wants changed
  - `x, y` - position on screen (percentage from top-left)
  - `reference` - optional image showing desired appearance

## Applying feedback

1. Read `feedback.json` from the latest session
2. Look at each `annotated` screenshot to see where pins are placed
3. Apply each pin's comment as a requested change
4. If a `reference` image is provided, match that visual
"""


def dump_json(document) -> str:
    """Pretty JSON, 2-space indent, non-ASCII kept as-is. NaN/Infinity are refused."""
    return json.dumps(document, indent=2, ensure_ascii=False, allow_nan=False)


def _write_text(path: Path, text: str) -> None:
    """Write via a temp sibling + rename so readers never see a partial file."""
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(text, encoding="utf-8")
    os.replace(tmp_path, path)


def session_name_for(moment: datetime) -> str:
    """2026-10-17-07-24-00 (UTC, second resolution)."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d-%H-%M-%S")


def capture_filename(number: int) -> str:
    return f"{number:03d}.png"


# Per-session mutual exclusion for manifest read-modify-write
_locks: dict[str, threading.RLock] = {}
_locks_guard = threading.Lock()


def _lock_for(key: str) -> threading.RLock:
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.RLock()
        return lock


class SessionStore:
    """Filesystem-backed session repository rooted at config.review_root."""

    def __init__(self, config: Config):
        self.config = config
        self.root = config.review_root
        self.sessions_dir = config.sessions_dir
        self.latest_path = config.latest_path

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    def clean_sessions(self) -> int:
        """Delete every session directory. Returns how many were removed."""
        if not self.sessions_dir.is_dir():
            return 0
        removed = 0
        for child in self.sessions_dir.iterdir():
            if child.is_dir():
                shutil.rmtree(child)
                removed += 1
        return removed

    def create_session(self, now: Optional[datetime] = None) -> Session:
        """
        Create sessions/<timestamp>/screenshots/ and refresh AGENTS.md.

        A name already taken within the same second gets a -02, -03, ...
        suffix, which still sorts after the original and before the next
        second.
        """
        base = session_name_for(now or datetime.now(timezone.utc))
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

        name = base
        suffix = 1
        while True:
            path = self.sessions_dir / name
            try:
                path.mkdir()
                break
            except FileExistsError:
                suffix += 1
                name = f"{base}-{suffix:02d}"

        screenshots_dir = path / "screenshots"
        screenshots_dir.mkdir()
        self.write_agent_context()
        return self._session(name)

    def write_agent_context(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.root / AGENTS_FILE
        path.write_text(AGENT_CONTEXT, encoding="utf-8")
        return path

    def _session(self, name: str) -> Session:
        path = self.sessions_dir / name
        return Session(
            name=name,
            path=path,
            screenshots_dir=path / "screenshots",
            review_root=self.root,
        )

    # ─────────────────────────────────────────────────────────────
    # Pointer
    # ─────────────────────────────────────────────────────────────

    def update_latest_pointer(self, session_name: str) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        _write_text(self.latest_path, f"sessions/{session_name}")
        return self.latest_path

    def _session_names(self) -> list[str]:
        if not self.sessions_dir.is_dir():
            return []
        return sorted(p.name for p in self.sessions_dir.iterdir() if p.is_dir())

    def _pointer_target(self) -> Optional[str]:
        """Session name named by `latest`, if it resolves to a real session."""
        try:
            relative = self.latest_path.read_text(encoding="utf-8").strip()
        except OSError:
            return None
        if not relative:
            return None

        target = (self.root / relative).resolve()
        if target.parent != self.sessions_dir.resolve() or not target.is_dir():
            return None
        return target.name

    def get_latest_session(self) -> Optional[Session]:
        """
        Resolve the active session from the filesystem, fresh every call.

        Pointer first; if missing or stale, the greatest session name;
        None when there are no sessions at all.
        """
        name = self._pointer_target()
        if name is None:
            names = self._session_names()
            if not names:
                return None
            name = names[-1]
        return self._session(name)

    def list_sessions(self) -> list[dict]:
        """Session directories, newest first."""
        return [
            {
                "name": name,
                "path": str(self.sessions_dir / name),
                "timestamp": name,
            }
            for name in reversed(self._session_names())
        ]

    # ─────────────────────────────────────────────────────────────
    # Documents
    # ─────────────────────────────────────────────────────────────

    def write_manifest(self, session_path: Path, manifest: Manifest) -> Path:
        manifest_path = Path(session_path) / MANIFEST_FILE
        _write_text(manifest_path, dump_json(manifest))
        return manifest_path

    def _read_json(self, path: Path):
        if not path.is_file():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CorruptDocumentError(f"Unreadable {path.name}: {e}") from e

    def read_manifest(self, session: Session) -> Optional[Manifest]:
        return self._read_json(session.manifest_path)

    def read_critique(self, session: Session) -> Optional[dict]:
        return self._read_json(session.path / CRITIQUE_FILE)

    def write_feedback(self, session: Session, document) -> Path:
        feedback_path = session.path / FEEDBACK_FILE
        _write_text(feedback_path, dump_json(document))
        return feedback_path

    # ─────────────────────────────────────────────────────────────
    # Assets
    # ─────────────────────────────────────────────────────────────

    def write_asset(self, session: Session, kind: str, filename: str, data: bytes) -> str:
        """
        Store an uploaded image under annotated/ or references/.

        Returns:
            Session-relative path, e.g. "annotated/001.png"
        """
        if kind not in ("annotated", "references"):
            raise ValueError(f"Unknown asset kind: {kind}")
        if not filename or filename in (".", "..") or Path(filename).name != filename or "\\" in filename:
            raise InvalidFilenameError(f"Invalid filename: {filename!r}")

        target_dir = session.path / kind
        target_dir.mkdir(parents=True, exist_ok=True)
        (target_dir / filename).write_bytes(data)
        return f"{kind}/{filename}"

    def resolve_asset(self, session: Session, relative: str) -> Optional[Path]:
        """Map a session-relative path to an existing file inside the session."""
        base = session.path.resolve()
        candidate = (base / relative).resolve()
        if base not in candidate.parents or not candidate.is_file():
            return None
        return candidate

    # ─────────────────────────────────────────────────────────────
    # Manifest mutations (serialized per session)
    # ─────────────────────────────────────────────────────────────

    @contextmanager
    def session_lock(self, session_name: str) -> Iterator[None]:
        lock = _lock_for(str(self.sessions_dir / session_name))
        with lock:
            yield

    def next_capture_number(self, session: Session, manifest: Optional[Manifest] = None) -> int:
        """
        One past the highest ordinal still present in this session.

        Looks at both manifest entries and files on disk so a deleted
        ordinal never overwrites a file that is still on disk.
        """
        highest = 0
        names = []
        if manifest:
            names.extend(Path(c.get("image", "")).name for c in manifest.get("captures", []))
        if session.screenshots_dir.is_dir():
            names.extend(p.name for p in session.screenshots_dir.iterdir())
        for name in names:
            match = _ORDINAL_RE.match(name)
            if match:
                highest = max(highest, int(match.group(1)))
        return highest + 1

    def append_capture(self, session: Session, device: str, capture: Capture) -> Manifest:
        """Append one capture, write the manifest, then advance the pointer."""
        with self.session_lock(session.name):
            manifest = self.read_manifest(session) or new_manifest(device)
            manifest.setdefault("captures", []).append(capture)
            self.write_manifest(session.path, manifest)
            self.update_latest_pointer(session.name)
            return manifest

    def delete_capture(self, session: Session, index: int) -> Capture:
        """
        Drop the manifest entry at `index`, its screenshot file and the
        annotated image exported for it.

        Remaining entries keep their filenames; nothing is renumbered. The
        annotated copy goes too because a later capture may reuse the
        ordinal.
        """
        with self.session_lock(session.name):
            manifest = self.read_manifest(session)
            if manifest is None:
                raise NoSessionError("Manifest not found")

            captures = manifest.get("captures", [])
            if index < 0 or index >= len(captures):
                raise CaptureIndexError(f"Invalid capture index: {index}")

            removed = captures.pop(index)
            image = removed.get("image", "")
            for relative in (image, f"annotated/{Path(image).name}"):
                path = self.resolve_asset(session, relative)
                if path is not None:
                    path.unlink(missing_ok=True)

            self.write_manifest(session.path, manifest)
            return removed
