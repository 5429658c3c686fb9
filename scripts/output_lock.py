# output_lock.py

import os
import time
from pathlib import Path


def lock_path_for(output_path: Path | str) -> Path:
    """Return the lock file path guarding ``output_path``."""
    output_path = Path(output_path)
    return output_path.parent / f"{output_path.name}.lock"


def acquire_lock(lock_path: Path, timeout: float = 60.0, poll: float = 0.5, LOG=None):
    """Acquire an exclusive lock by atomically creating a lock file.

    Retries until timeout; raises TimeoutError if not acquired.
    """
    lock_path = Path(lock_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    start = time.time()
    while True:
        try:
            fd = os.open(str(lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            os.write(fd, str(os.getpid()).encode("ascii"))
            os.close(fd)
            if LOG:
                LOG.debug(f"Acquired lock: {lock_path}")
            return
        except FileExistsError:
            if time.time() - start > timeout:
                raise TimeoutError(f"Timeout acquiring lock {lock_path}")
            if LOG:
                LOG.debug(f"Lock busy, waiting: {lock_path}")
            time.sleep(poll)


def release_lock(lock_path: Path, LOG=None):
    """
    Release an exclusive lock by removing the lock file.

    Parameters
    ----------
    lock_path : Path
        Path to the lock file to remove.
    LOG : logger, optional
        Logger instance for debug messages.
    """
    try:
        os.unlink(str(lock_path))
        if LOG:
            LOG.debug(f"Released lock: {lock_path}")
    except FileNotFoundError:
        pass
