"""
Lock management for roleflow.

One advisory flock per workspace serializes dispatcher invocations, so two
read-modify-write cycles on the state file never interleave.
"""

import fcntl
import os
import sys
import time
import signal
import atexit
import threading
import logging
from pathlib import Path
from contextlib import contextmanager

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.2
STATE_LOCK_FILE = "state.lock"


class LockTimeout(Exception):
    """Lock acquisition timed out."""
    pass


def is_locked(lock_file: Path) -> bool:
    """True if another process currently holds the lock."""
    if not lock_file.exists():
        return False
    with open(lock_file, 'r') as fd:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return True
        fcntl.flock(fd, fcntl.LOCK_UN)
    return False


@contextmanager
def _acquire_lock(lock_file: Path, timeout: float, lock_name: str):
    """
    Internal helper to acquire a file lock.

    Lock files are never deleted: removing one lets two processes hold
    "exclusive" locks on different inodes with the same path.
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = open(lock_file, 'a+')
    start = time.monotonic()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.monotonic() - start > timeout:
                fd.close()
                raise LockTimeout(f"Could not acquire {lock_name} within {timeout}s")
            time.sleep(POLL_INTERVAL)

    def cleanup():
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
            fd.close()
        except (OSError, ValueError):
            pass

    atexit.register(cleanup)
    in_main_thread = _in_main_thread()
    if in_main_thread:
        original_sigterm = signal.signal(signal.SIGTERM, lambda *_: sys.exit(1))

    try:
        fd.seek(0)
        fd.truncate()
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        logger.debug(f"Acquired {lock_name}")
        yield
    finally:
        atexit.unregister(cleanup)
        if in_main_thread:
            signal.signal(signal.SIGTERM, original_sigterm)
        cleanup()
        logger.debug(f"Released {lock_name}")


def _in_main_thread() -> bool:
    return threading.current_thread() is threading.main_thread()


@contextmanager
def state_lock(lock_dir: Path, timeout: float = 30):
    """
    Acquire the workspace state lock, yield, release on every exit path.
    """
    lock_file = lock_dir / STATE_LOCK_FILE
    with _acquire_lock(lock_file, timeout, "workspace state lock"):
        yield
