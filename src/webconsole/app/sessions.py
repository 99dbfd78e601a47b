"""Session tokens handed out after a successful secret check.

A token is a bearer credential for every Task, valid for ``token_timeout_s``
seconds after it was last issued or used. A background thread periodically
drops expired tokens.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)

# Lowercase only: user-supplied identifiers are lowercased before use.
ID_ALPHABET = "abcdefghijklmnopqrstuvwxyz1234567890"
ID_LENGTH = 16


def generate_id_string(length: int = ID_LENGTH) -> str:
    """Random identifier drawn uniformly from ``ID_ALPHABET``."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


class SessionManager:
    """Thread-safe token map plus the sweeper thread that expires entries."""

    def __init__(
        self,
        *,
        token_timeout_s: int = 600,
        check_period_s: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.token_timeout_s = token_timeout_s
        self.check_period_s = check_period_s
        self._clock = clock
        self._tokens: dict[str, float] = {}
        # One lock for issue, refresh, validate and sweep.
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._sweeper: threading.Thread | None = None

    def issue_or_refresh(self, existing_token: str = "") -> str:
        """Refresh a valid token's timestamp, or mint a new token."""
        now = self._clock()
        with self._lock:
            if existing_token and self._is_valid_locked(existing_token, now):
                self._tokens[existing_token] = now
                return existing_token
            token = generate_id_string()
            while token in self._tokens:
                token = generate_id_string()
            self._tokens[token] = now
        logger.debug("session event=issued active_tokens=%d", len(self._tokens))
        return token

    def is_valid(self, token: str) -> bool:
        if not token:
            return False
        with self._lock:
            return self._is_valid_locked(token, self._clock())

    def sweep_expired(self) -> int:
        """Remove every expired token and return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [
                token
                for token, issued_at in self._tokens.items()
                if now - issued_at > self.token_timeout_s
            ]
            for token in expired:
                del self._tokens[token]
        if expired:
            logger.info("session event=sweep removed=%d", len(expired))
        return len(expired)

    def start(self) -> None:
        """Start the background sweeper thread (idempotent)."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, name="webconsole-token-sweeper", daemon=True
        )
        self._sweeper.start()

    def stop(self, timeout_s: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=timeout_s)
            self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.check_period_s):
            try:
                self.sweep_expired()
            except Exception:  # noqa: BLE001
                logger.exception("session event=sweep_failed")

    def _is_valid_locked(self, token: str, now: float) -> bool:
        issued_at = self._tokens.get(token)
        if issued_at is None:
            return False
        return now - issued_at <= self.token_timeout_s
