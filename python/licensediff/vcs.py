"""Git working copies for the commits being compared."""

import logging
import subprocess
from pathlib import Path
from typing import List

from .exceptions import VcsError

logger = logging.getLogger(__name__)


def _git(args: List[str]) -> str:
    """Run a git command, raising VcsError on failure."""
    cmd = ["git"] + args
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(cmd, check=True, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise VcsError("git executable not found") from e
    except subprocess.CalledProcessError as e:
        raise VcsError(
            f"git command failed (exit {e.returncode}): {(e.stderr or '').strip()}"
        ) from e
    return result.stdout


class GitRepository:
    """A local clone that can be switched between commits."""

    def __init__(self, url: str, directory):
        self.url = url
        self.directory = Path(directory)

    def clone_or_open(self) -> Path:
        """Clone the repository unless the directory already holds one."""
        if (self.directory / ".git").exists():
            logger.debug(f"Reusing existing clone in {self.directory}")
            return self.directory

        self.directory.mkdir(parents=True, exist_ok=True)
        logger.info(f"Cloning {self.url} into {self.directory}")
        _git(["clone", "--", self.url, str(self.directory)])
        return self.directory

    def checkout(self, commit: str) -> Path:
        """Force the working tree to the given commit and return its root."""
        if not commit or not commit.strip():
            raise VcsError("No commit given")
        logger.info(f"Checking out {commit} in {self.directory}")
        _git(["-C", str(self.directory), "checkout", "--force", commit])
        return self.directory
