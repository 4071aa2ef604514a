"""
Credential table for the login form.

A fixed number of username/password pairs, the first of which is always the
built-in default. The table is filled once at startup and never changes.
"""

import secrets
from typing import Iterable, Tuple

from xterminal_broker.core.logger import get_logger

logger = get_logger(__name__)

# ── Credentials ──
DEFAULT_CREDENTIAL: Tuple[str, str] = ("xterminal", "xterminal")
MAX_CREDENTIALS: int = 5

# ── Session cookie ──
COOKIE_NAME: str = "mgs"  # exported so gate.py can import it


def parse_credential(entry: str) -> Tuple[str, str]:
    """Split a "username:password" string on its first colon."""
    username, sep, password = entry.partition(":")
    if not sep or not username:
        raise ValueError(f"Invalid credential {entry!r}, expected username:password")
    return username, password


class CredentialTable:
    def __init__(self, entries: Iterable[Tuple[str, str]] = (DEFAULT_CREDENTIAL,)):
        self._entries: Tuple[Tuple[str, str], ...] = tuple(entries)

    @classmethod
    def from_entries(cls, extra: Iterable[str] = (), capacity: int = MAX_CREDENTIALS) -> "CredentialTable":
        """Default pair first, then up to capacity - 1 "username:password" entries."""
        entries = [DEFAULT_CREDENTIAL]
        for entry in extra:
            if len(entries) >= capacity:
                logger.warning(f"Credential table full ({capacity}), ignoring further entries")
                break
            entries.append(parse_credential(entry))
        return cls(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def verify(self, username: str, password: str) -> bool:
        """Exact match against every entry; compares with compare_digest."""
        user_bytes = username.encode("utf-8")
        pass_bytes = password.encode("utf-8")
        matched = False
        for known_user, known_pass in self._entries:
            user_ok = secrets.compare_digest(user_bytes, known_user.encode("utf-8"))
            pass_ok = secrets.compare_digest(pass_bytes, known_pass.encode("utf-8"))
            # Evaluate every entry so timing doesn't reveal which one matched
            matched |= user_ok and pass_ok
        return matched
