"""
Workspace lock for story execution.

Only one story may mutate the workspace at a time. The lock is an flock on
locks/story.lock inside the state directory; the holder writes its PID and
story ID into the file so a refused caller can name who holds it.
"""

import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path

from task_orchestrator.errors import ConcurrentStoryConflict

LOCK_FILE = "story.lock"


def _read_holder(fd) -> str | None:
    fd.seek(0)
    content = fd.read().split()
    # "<pid> <story_id>"
    return content[1] if len(content) >= 2 else None


def current_holder(locks_dir: Path) -> str | None:
    """Story ID holding the workspace lock, or None if it's free."""
    lock_file = Path(locks_dir) / LOCK_FILE
    if not lock_file.exists():
        return None

    with open(lock_file, "r") as fd:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return _read_holder(fd) or "unknown"
        fcntl.flock(fd, fcntl.LOCK_UN)
        return None


@contextmanager
def story_lock(locks_dir: Path, story_id: str, timeout: int = 0):
    """
    Hold the workspace for story_id, yield, release on exit.

    Args:
        locks_dir: Directory for lock files
        story_id: Story taking the workspace
        timeout: Seconds to wait for a busy lock (0 = fail immediately)

    Raises:
        ConcurrentStoryConflict: another story holds the workspace
    """
    lock_file = Path(locks_dir) / LOCK_FILE
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    # a+ so waiting callers don't truncate the holder's ID
    fd = open(lock_file, "a+")
    start = time.time()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.time() - start >= timeout:
                holder = _read_holder(fd)
                fd.close()
                raise ConcurrentStoryConflict(story_id, holder)
            time.sleep(1)

    try:
        fd.seek(0)
        fd.truncate()
        fd.write(f"{os.getpid()} {story_id}\n")
        fd.flush()
        yield
    finally:
        fd.seek(0)
        fd.truncate()
        fcntl.flock(fd, fcntl.LOCK_UN)
        fd.close()
