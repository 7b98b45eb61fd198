"""
Centralized configuration. Build once at process entry, pass everywhere.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()


DEFAULT_PORT = 3847
REVIEW_DIR_NAME = ".crit"


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class Config:
    """
    Process-wide settings for capture and serve.

    Constructed by the CLI (or tests) and handed to SessionStore,
    create_app and run_capture. Nothing below this layer reads os.environ.
    """
    project_dir: Path = field(default_factory=Path.cwd)
    port: int = DEFAULT_PORT
    host: str = "127.0.0.1"
    review_dir_name: str = REVIEW_DIR_NAME

    # Seconds between answering /api/stop and terminating the process
    stop_delay: float = 0.5

    # Debug mode - set DEBUG=1 in env to enable verbose logging
    debug: bool = False

    # Open the review UI in a browser when serving
    open_browser: bool = True

    def __post_init__(self):
        self.project_dir = Path(self.project_dir).expanduser().resolve()
        self.port = int(self.port)

    @classmethod
    def from_env(cls, **overrides) -> "Config":
        """
        Build a Config from environment variables (and .env).

        Keyword overrides win over the environment, e.g. a --port flag.
        None values are ignored so argparse defaults can be passed through.
        """
        values = {
            "project_dir": Path(os.getenv("CRIT_PROJECT_DIR") or Path.cwd()),
            "port": int(os.getenv("PORT", str(DEFAULT_PORT))),
            "host": os.getenv("CRIT_HOST", "127.0.0.1"),
            "stop_delay": float(os.getenv("CRIT_STOP_DELAY", "0.5")),
            "debug": _env_flag("DEBUG"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    # ─────────────────────────────────────────────────────────────
    # Derived paths
    # ─────────────────────────────────────────────────────────────

    @property
    def review_root(self) -> Path:
        return self.project_dir / self.review_dir_name

    @property
    def sessions_dir(self) -> Path:
        return self.review_root / "sessions"

    @property
    def latest_path(self) -> Path:
        return self.review_root / "latest"

    @property
    def url(self) -> str:
        return f"http://localhost:{self.port}"
