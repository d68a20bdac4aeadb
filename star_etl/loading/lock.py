"""
Run Lock

Guards the output location so only one run publishes to it at a time.
The lock is a file created with O_CREAT | O_EXCL next to the published tables.
"""

import json
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

import structlog

from star_etl.exceptions import RunInProgress

logger = structlog.get_logger(__name__)


class RunLock:
    """
    Exclusive, file-based lock on an output location.

    Example:
        with RunLock(base_path / ".run.lock", owner=run_id):
            ...
    """

    def __init__(
        self,
        path: Union[str, Path],
        stale_after: float = 6 * 3600,
        owner: Optional[str] = None,
    ):
        self.path = Path(path)
        self.stale_after = stale_after
        self.owner = owner or f"pid-{os.getpid()}"
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def _read_owner(self) -> Optional[str]:
        try:
            return json.loads(self.path.read_text()).get("owner")
        except (OSError, ValueError):
            return None

    def _is_stale(self) -> bool:
        try:
            age = time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            return True
        return age > self.stale_after

    def _create(self) -> None:
        fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        with os.fdopen(fd, "w") as f:
            json.dump({
                "owner": self.owner,
                "pid": os.getpid(),
                "acquired_at": datetime.utcnow().isoformat(),
            }, f)

    def acquire(self) -> "RunLock":
        """
        Take the lock.

        Raises:
            RunInProgress: If another live run holds it
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._create()
        except FileExistsError:
            if not self._is_stale():
                raise RunInProgress(str(self.path), owner=self._read_owner()) from None
            logger.warning(
                "Breaking stale run lock",
                lock=str(self.path),
                previous_owner=self._read_owner(),
            )
            self.path.unlink(missing_ok=True)
            try:
                self._create()
            except FileExistsError:
                raise RunInProgress(str(self.path), owner=self._read_owner()) from None

        self._held = True
        logger.debug("Run lock acquired", lock=str(self.path), owner=self.owner)
        return self

    def refresh(self) -> None:
        """
        Mark the lock as still in use so long runs are not taken for stale ones.

        Raises:
            RunInProgress: If the lock was broken and taken over by another run
        """
        if not self._held:
            return
        owner = self._read_owner()
        if owner == self.owner:
            try:
                os.utime(self.path)
                return
            except FileNotFoundError:
                owner = None
        self._held = False
        raise RunInProgress(str(self.path), owner=owner)

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        self.path.unlink(missing_ok=True)
        logger.debug("Run lock released", lock=str(self.path), owner=self.owner)

    def __enter__(self) -> "RunLock":
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
