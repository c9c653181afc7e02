"""Interfaces of the collaborators injected into the board service.

Authentication, user feedback and user lookup live outside the core. The
board service only talks to these protocols, so no process-wide session or
notification state exists.
"""

from enum import Enum
from typing import Iterable, Protocol, Sequence, runtime_checkable

from sprint_service.models import UserProfile
from sprint_service.utils.logging import get_logger

logger = get_logger(__name__)


class Severity(str, Enum):
    """Notification severity."""

    INFO = "info"
    SUCCESS = "success"
    DESTRUCTIVE = "destructive"


@runtime_checkable
class AuthProvider(Protocol):
    """Supplies the identity of the acting user."""

    def current_user_id(self) -> str | None: ...


@runtime_checkable
class Notifier(Protocol):
    """Accepts user feedback messages."""

    def notify(self, title: str, description: str, severity: Severity = Severity.INFO) -> None: ...


@runtime_checkable
class UserDirectory(Protocol):
    """Resolves user identifiers to display data."""

    async def resolve(self, user_ids: Sequence[str]) -> list[UserProfile]: ...


class StaticAuthProvider:
    """Auth provider bound to a fixed user (CLI sessions, tests)."""

    def __init__(self, user_id: str | None) -> None:
        self._user_id = user_id

    def current_user_id(self) -> str | None:
        return self._user_id

    def sign_out(self) -> None:
        self._user_id = None


class LoggingNotifier:
    """Notifier that writes messages to the structured log.

    Keeps the last messages so callers (CLI, tests) can show them.
    """

    def __init__(self, history_size: int = 50) -> None:
        self.history_size = history_size
        self.messages: list[tuple[str, str, Severity]] = []

    def notify(self, title: str, description: str, severity: Severity = Severity.INFO) -> None:
        severity = Severity(severity)
        self.messages.append((title, description, severity))
        del self.messages[: -self.history_size]
        if severity == Severity.DESTRUCTIVE:
            logger.warning("notification", title=title, description=description, severity=severity.value)
        else:
            logger.info("notification", title=title, description=description, severity=severity.value)


class InMemoryUserDirectory:
    """User directory over a fixed set of profiles."""

    def __init__(self, users: Iterable[UserProfile] = ()) -> None:
        self._users = {u.id: u for u in users}

    def add(self, user: UserProfile) -> None:
        self._users[user.id] = user

    async def resolve(self, user_ids: Sequence[str]) -> list[UserProfile]:
        """Return profiles for known ids, in request order; unknown ids are skipped."""
        return [self._users[uid] for uid in user_ids if uid in self._users]
