"""
Crit

Capture iOS Simulator screenshots into sessions, review them in the
browser, and export pinned feedback for a coding agent.

Usage:
    crit capture
    crit serve --port 3847

    # Programmatic
    from crit import Config, SessionStore
    store = SessionStore(Config(project_dir="~/Code/MyApp"))
    session = store.get_latest_session()
"""
from .config import Config
from .orchestrator import SessionStore, Session, run_capture

__all__ = ["Config", "SessionStore", "Session", "run_capture"]
