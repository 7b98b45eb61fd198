"""
Session lifecycle.

Architecture:
    capture:  get_booted → clean_sessions → create_session
              → screenshot ⟲ (until q) → write_manifest → update_latest_pointer
    serve:    each request → get_latest_session → read / mutate under session_lock

SessionStore is the only code that touches the .crit layout.
"""
from .session import (
    Session,
    SessionStore,
    SessionStoreError,
    NoSessionError,
    CaptureIndexError,
    InvalidFilenameError,
    capture_filename,
)
from .capturer import run_capture, CaptureOutcome

__all__ = [
    "Session",
    "SessionStore",
    "SessionStoreError",
    "NoSessionError",
    "CaptureIndexError",
    "InvalidFilenameError",
    "capture_filename",
    "run_capture",
    "CaptureOutcome",
]
