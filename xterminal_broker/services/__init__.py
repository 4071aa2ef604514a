from xterminal_broker.services.broker_client import BrokerClient
from xterminal_broker.services.session_store import (
    Session,
    SessionLimitExceeded,
    SessionStore,
    format_token,
    parse_token,
)
from xterminal_broker.services.sweeper import SessionSweeper

__all__ = [
    "BrokerClient",
    "Session",
    "SessionLimitExceeded",
    "SessionStore",
    "SessionSweeper",
    "format_token",
    "parse_token",
]
