"""
Keep the review directory out of version control.
"""
import subprocess
from pathlib import Path

from crit.config import REVIEW_DIR_NAME


def _git(args: list, cwd: Path) -> int:
    """Run a git command quietly, return its exit code (-1 if git is unavailable)."""
    try:
        result = subprocess.run(
            ["git"] + args,
            cwd=str(cwd),
            capture_output=True,
            timeout=10,
        )
        return result.returncode
    except (OSError, subprocess.TimeoutExpired):
        return -1


def ensure_crit_ignored(project_dir: Path, dir_name: str = REVIEW_DIR_NAME) -> bool:
    """
    Append `.crit/` to .gitignore when project_dir is a git checkout.

    Silent no-op if: not a git repo, git not installed, or already ignored.

    Returns:
        True if .gitignore was modified
    """
    project_dir = Path(project_dir)

    if _git(["rev-parse", "--git-dir"], project_dir) != 0:
        return False
    if _git(["check-ignore", "-q", dir_name], project_dir) == 0:
        return False

    gitignore_path = project_dir / ".gitignore"
    prefix = ""
    if gitignore_path.exists():
        content = gitignore_path.read_text()
        if content and not content.endswith("\n"):
            prefix = "\n"

    with open(gitignore_path, "a") as f:
        f.write(f"{prefix}{dir_name}/\n")
    print(f"  Added {dir_name}/ to .gitignore", flush=True)
    return True
