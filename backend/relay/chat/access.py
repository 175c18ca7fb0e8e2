"""Access control for chat sockets.

Every session starts unauthorized. Exactly one policy is active per process
(see ``AccessMode``). Authorization is monotonic: once granted it holds until
the socket disconnects, and later ``auth``/``join`` events are ignored.
"""
import hmac
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from relay.config import AccessMode

logger = logging.getLogger(__name__)


def anonymous_tag(socket_id: str) -> str:
    """Short anonymous author tag derived from the socket id."""
    return "anon-" + socket_id[:5]


@dataclass
class ChatSession:
    """Per-socket state, created on connect and dropped on disconnect."""
    socket_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    autor: str = ""
    authorized: bool = False

    def __post_init__(self) -> None:
        if not self.autor:
            self.autor = anonymous_tag(self.socket_id)


class AuthOutcome(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    IGNORED = "ignored"


class AccessGate:
    """Decides whether a session may read history and publish."""

    def __init__(self, mode: AccessMode, shared_secret: str) -> None:
        self.mode = AccessMode(mode)
        self._secret = shared_secret

    def _secret_matches(self, credential: object) -> bool:
        if not isinstance(credential, str) or not self._secret:
            return False
        return hmac.compare_digest(credential.encode("utf-8"), self._secret.encode("utf-8"))

    def on_connect(self, session: ChatSession) -> bool:
        """Authorize immediately in open mode. Returns the new state."""
        if self.mode == AccessMode.OPEN:
            session.authorized = True
        return session.authorized

    def check_auth(self, session: ChatSession, credential: object) -> AuthOutcome:
        """Handle an ``auth`` event (shared-secret mode)."""
        if self.mode != AccessMode.SHARED_SECRET or session.authorized:
            return AuthOutcome.IGNORED
        if self._secret_matches(credential):
            session.authorized = True
            return AuthOutcome.GRANTED
        logger.warning(f"[Auth] Wrong shared secret from socket {session.socket_id}")
        return AuthOutcome.DENIED

    def check_join(
        self, session: ChatSession, display_name: object, credential: object
    ) -> AuthOutcome:
        """Handle a ``join`` event (named-join mode).

        On success the session's author tag becomes the trimmed display name.
        """
        if self.mode != AccessMode.NAMED_JOIN or session.authorized:
            return AuthOutcome.IGNORED
        name: Optional[str] = display_name.strip() if isinstance(display_name, str) else None
        has_credential = isinstance(credential, str) and credential.strip()
        if not name or not has_credential or not self._secret_matches(credential):
            logger.warning(f"[Auth] Rejected join from socket {session.socket_id}")
            return AuthOutcome.DENIED
        session.autor = name
        session.authorized = True
        return AuthOutcome.GRANTED
