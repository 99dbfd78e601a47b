"""Decides whether a request may act on a Task.

A caller proves access either with a session token or with the Task's secret.
Tasks without a secret are open to everyone. Every successful check returns a
token so the caller can keep polling without resending the secret.
"""

from __future__ import annotations

import logging

import bcrypt

from .errors import NotAuthorisedError
from .models import Authorization
from .sessions import SessionManager
from .task_store import TaskStore

logger = logging.getLogger(__name__)

# Cost factor written by the Task creation tool.
BCRYPT_ROUNDS = 14


def hash_secret(secret: str, *, rounds: int = BCRYPT_ROUNDS) -> str:
    """Hash a Task secret for the ``secret:`` line of config.txt."""
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_secret(secret: str, secret_hash: str) -> bool:
    try:
        return bcrypt.checkpw(secret.encode("utf-8"), secret_hash.encode("utf-8"))
    except ValueError:
        logger.warning("auth event=bad_secret_hash detail=stored secret is not a bcrypt hash")
        return False


class Authorizer:
    def __init__(self, store: TaskStore, sessions: SessionManager) -> None:
        self.store = store
        self.sessions = sessions

    def authorize(self, task_id: str, token: str = "", secret: str = "") -> Authorization:
        """Check token or secret for ``task_id``.

        Raises TaskNotFoundError for unknown Tasks and NotAuthorisedError when
        neither credential is accepted.
        """
        task = self.store.get_task(task_id)
        if token:
            if not self.sessions.is_valid(token):
                raise NotAuthorisedError("invalid or expired token")
        elif task.has_secret and not check_secret(secret, task.secret):
            logger.info("auth event=rejected task_id=%s reason=incorrect_secret", task.task_id)
            raise NotAuthorisedError("incorrect secret")

        return Authorization(task=task, token=self.sessions.issue_or_refresh(token))
