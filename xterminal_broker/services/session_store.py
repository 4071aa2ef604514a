"""
In-memory HTTP session store.

Sessions are keyed by a 64-bit token drawn from the OS CSPRNG and carried
in the browser as 16 hex characters. Every successful lookup refreshes the
session's last-activity time; sweep() drops sessions idle longer than the TTL.

Only the event loop touches the store (request middleware and the sweeper
task), so there is no locking.
"""

import secrets
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from xterminal_broker.core.logger import get_logger

logger = get_logger(__name__)

TOKEN_BITS: int = 64
TOKEN_HEX_WIDTH: int = TOKEN_BITS // 4
_TOKEN_ATTEMPTS: int = 8
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


class SessionLimitExceeded(Exception):
    """No room (or no free token) for another session."""


@dataclass
class Session:
    token: int
    created: float
    last_used: float
    username: str

    @property
    def token_hex(self) -> str:
        return format_token(self.token)


def format_token(token: int) -> str:
    """Cookie form of a token: zero-padded lowercase hex."""
    return f"{token:0{TOKEN_HEX_WIDTH}x}"


def parse_token(value: Optional[str]) -> Optional[int]:
    """Parse a cookie value back into a token, or None if it isn't one."""
    if not value:
        return None
    value = value.strip()
    # int(..., 16) alone would also take "0x", "_" and signs
    if not 0 < len(value) <= TOKEN_HEX_WIDTH or not all(c in _HEX_DIGITS for c in value):
        return None
    return int(value, 16) or None


class SessionStore:
    def __init__(
        self,
        ttl: float = 30.0,
        max_sessions: int = 1024,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            ttl: Idle seconds after which sweep() evicts a session
            max_sessions: Upper bound on live sessions
            clock: Time source returning epoch seconds
        """
        self._sessions: Dict[int, Session] = {}
        self.ttl = ttl
        self.max_sessions = max_sessions
        self.clock = clock

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, token: int) -> bool:
        return token in self._sessions

    def create(self, username: str) -> Session:
        """
        Start a session for an authenticated user.

        Raises:
            SessionLimitExceeded: store is full or no unused token was found
        """
        if len(self._sessions) >= self.max_sessions:
            logger.warning(f"Session limit reached ({self.max_sessions}), refusing login for {username}")
            raise SessionLimitExceeded(f"session limit of {self.max_sessions} reached")

        token = self._new_token()
        now = self.clock()
        session = Session(token=token, created=now, last_used=now, username=username)
        self._sessions[token] = session
        logger.info(f"Session {session.token_hex} created for {username}")
        return session

    def lookup(self, token: Optional[int]) -> Optional[Session]:
        """Return the live session for a token and mark it as used."""
        if token is None:
            return None
        session = self._sessions.get(token)
        if session is None:
            return None
        session.last_used = max(session.last_used, self.clock())
        return session

    def delete(self, session: Session) -> None:
        self._sessions.pop(session.token, None)

    def sweep(self, now: Optional[float] = None, ttl: Optional[float] = None) -> None:
        """Remove every session idle for longer than ttl as of now."""
        if now is None:
            now = self.clock()
        if ttl is None:
            ttl = self.ttl
        threshold = now - ttl

        expired = [s for s in self._sessions.values() if s.last_used < threshold]
        for session in expired:
            logger.info(f"Session timed out: {session.token_hex}")
            self.delete(session)

    def _new_token(self) -> int:
        for _ in range(_TOKEN_ATTEMPTS):
            token = secrets.randbits(TOKEN_BITS)
            if token and token not in self._sessions:
                return token
        raise SessionLimitExceeded("could not allocate a unique session token")
