import logging
import threading
from contextlib import contextmanager

from .exceptions import ActionInProgress

logger = logging.getLogger(__name__)


class MilestoneActionLock:
    """
    Per-milestone exclusivity for payment actions.

    Acquiring a (project_id, index) pair that is already held raises
    ActionInProgress immediately instead of blocking.

    Usage:
        with lock.hold(project_id, index):
            ...
    """

    def __init__(self):
        self._held = set()
        self._guard = threading.Lock()

    def acquire(self, project_id, index):
        key = (str(project_id), index)
        with self._guard:
            if key in self._held:
                logger.warning(f"Payment action already in progress for project {project_id}, milestone {index}")
                raise ActionInProgress(f"An action is already in progress for milestone {index}")
            self._held.add(key)

    def release(self, project_id, index):
        with self._guard:
            self._held.discard((str(project_id), index))

    def is_held(self, project_id, index):
        with self._guard:
            return (str(project_id), index) in self._held

    @contextmanager
    def hold(self, project_id, index):
        self.acquire(project_id, index)
        try:
            yield self
        finally:
            self.release(project_id, index)


action_lock = MilestoneActionLock()
