"""Admin session management for in-memory storage."""

from datetime import UTC, datetime, timedelta

from cuid2 import cuid_wrapper

from clinic_queue.config import QueueConfig
from clinic_queue.models.session import AdminSession
from clinic_queue.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


class InMemorySessionManager:
    """In-memory admin session store with sliding expiry.

    Credential checks happen upstream; this only tracks which opaque
    session ids are currently valid callers.
    """

    def __init__(self, session_timeout_minutes: int = 480):
        """Initialize session manager.

        Args:
            session_timeout_minutes: Idle minutes before a session expires
        """
        self.sessions: dict[str, AdminSession] = {}
        self.session_timeout = timedelta(minutes=session_timeout_minutes)

    def open_session(self, admin_id: str) -> AdminSession:
        """Open a new session for an already authenticated admin.

        Args:
            admin_id: Identifier of the admin

        Returns:
            The new session
        """
        self._cleanup_expired_sessions()

        session = AdminSession(session_id=self._generate_session_id(), admin_id=admin_id)
        self.sessions[session.session_id] = session
        logger.info(f"Opened session for admin {admin_id}")
        return session

    def get_session(self, session_id: str) -> AdminSession | None:
        """Get existing session by ID.

        Args:
            session_id: Session identifier

        Returns:
            Session if found and not expired, None otherwise
        """
        self._cleanup_expired_sessions()

        session = self.sessions.get(session_id)
        if session:
            session.update_activity()
        return session

    def close_session(self, session_id: str) -> bool:
        """Close a session.

        Args:
            session_id: Session identifier

        Returns:
            True if session was closed, False if not found
        """
        if session_id in self.sessions:
            del self.sessions[session_id]
            return True
        return False

    def _generate_session_id(self) -> str:
        """Generate a new CUID-based session ID."""
        return cuid()

    def _cleanup_expired_sessions(self) -> None:
        """Remove expired sessions from memory."""
        current_time = datetime.now(UTC)
        expired_sessions = [
            session_id
            for session_id, session in self.sessions.items()
            if current_time - session.last_activity > self.session_timeout
        ]

        for session_id in expired_sessions:
            del self.sessions[session_id]

    def get_session_count(self) -> int:
        """Get current number of active sessions."""
        self._cleanup_expired_sessions()
        return len(self.sessions)


_session_manager: InMemorySessionManager | None = None


def get_session_manager() -> InMemorySessionManager:
    """Get or create the process-wide session manager."""
    global _session_manager
    if _session_manager is None:
        _session_manager = InMemorySessionManager(QueueConfig.from_env().session_timeout_minutes)
    return _session_manager
