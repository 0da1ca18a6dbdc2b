"""Identity, sessions and the administrator allow-list.

The authentication provider is external. Its verified identity reaches the
service as forwarded headers:

- ``X-User-Id`` (required): provider uid
- ``X-User-Email``, ``X-User-Name``, ``X-User-Photo`` (optional)

Signing in turns that identity into a Session, which is what every later
request presents through ``X-Session-Token``. A session holds the identity
and the set of priority ids it has voted for. It lives from sign-in until
sign-out or until it expires, and is never persisted.

Admin sessions additionally pass the allow-list, which fails closed: an
identity whose email is not listed is denied at sign-in and again on every
request made with an existing session.
"""

import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Annotated, Callable, Dict, Iterable, Optional, Set

import structlog
from fastapi import Header, Request

from database import DUPLICATE_KEY_ERRORS, USERS, guarded, utcnow
from errors import AuthDenied, NotSignedIn
from schemas import Identity, User

logger = structlog.get_logger(__name__)

DEFAULT_SESSION_TTL = timedelta(hours=24)


@dataclass
class Session:
    token: str
    identity: Identity
    voted: Set[str] = field(default_factory=set)
    admin: bool = False
    created_at: datetime = field(default_factory=utcnow)

    @property
    def uid(self) -> str:
        return self.identity.uid


class SessionRegistry:
    """Open sessions by token. A session expires ttl after it was opened."""

    def __init__(self, ttl: timedelta = DEFAULT_SESSION_TTL, clock: Callable[[], datetime] = utcnow):
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}

    def _expired(self, session: Session, now: datetime) -> bool:
        return now - session.created_at >= self.ttl

    def open(self, identity: Identity, voted: Iterable[str] = (), admin: bool = False) -> Session:
        now = self._clock()
        session = Session(
            token=secrets.token_urlsafe(32),
            identity=identity,
            voted=set(voted),
            admin=admin,
            created_at=now,
        )
        with self._lock:
            for token in [t for t, s in self._sessions.items() if self._expired(s, now)]:
                del self._sessions[token]
            self._sessions[session.token] = session
        return session

    def get(self, token: Optional[str]) -> Optional[Session]:
        if not token:
            return None
        with self._lock:
            session = self._sessions.get(token)
            if session is not None and self._expired(session, self._clock()):
                del self._sessions[token]
                logger.info("session_expired", uid=session.uid)
                return None
            return session

    def close(self, token: Optional[str]) -> bool:
        if not token:
            return False
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class AdminAllowList:
    def __init__(self, emails: Iterable[str]):
        self._emails = frozenset(e.strip().lower() for e in emails if e and e.strip())

    def __contains__(self, email: Optional[str]) -> bool:
        return bool(email) and email.strip().lower() in self._emails

    def check(self, identity: Identity) -> None:
        if identity.email not in self:
            logger.warning("admin_denied", uid=identity.uid, email=identity.email)
            raise AuthDenied("You are not authorized to access the admin dashboard")


def remember_user(store, identity: Identity) -> None:
    """Merge the identity's profile into the users collection."""
    now = utcnow()
    profile = User(
        email=identity.email,
        displayName=identity.displayName,
        photoURL=identity.photoURL,
        lastLogin=now,
    ).model_dump()
    with guarded("remember_user"):
        users = store[USERS]
        if users.find_one({"_id": identity.uid}) is None:
            try:
                users.insert_one({"_id": identity.uid, "createdAt": now, **profile})
                return
            except DUPLICATE_KEY_ERRORS:
                # a concurrent sign-in created it first
                pass
        users.update_one({"_id": identity.uid}, {"$set": profile})


# FastAPI dependencies

def get_identity(
    x_user_id: Annotated[Optional[str], Header()] = None,
    x_user_email: Annotated[Optional[str], Header()] = None,
    x_user_name: Annotated[Optional[str], Header()] = None,
    x_user_photo: Annotated[Optional[str], Header()] = None,
) -> Identity:
    if not x_user_id or not x_user_id.strip():
        raise NotSignedIn("Please sign in first")
    return Identity(
        uid=x_user_id.strip(),
        email=x_user_email,
        displayName=x_user_name,
        photoURL=x_user_photo,
    )


def optional_session(
    request: Request,
    x_session_token: Annotated[Optional[str], Header()] = None,
) -> Optional[Session]:
    return request.app.state.sessions.get(x_session_token)


def current_session(
    request: Request,
    x_session_token: Annotated[Optional[str], Header()] = None,
) -> Session:
    session = request.app.state.sessions.get(x_session_token)
    if session is None:
        raise NotSignedIn("Please sign in first")
    return session


def require_admin(
    request: Request,
    x_session_token: Annotated[Optional[str], Header()] = None,
) -> Session:
    sessions: SessionRegistry = request.app.state.sessions
    session = sessions.get(x_session_token)
    if session is None or not session.admin:
        raise AuthDenied("Admin sign-in required")
    try:
        request.app.state.allow_list.check(session.identity)
    except AuthDenied:
        sessions.close(session.token)
        raise
    return session
