"""Session repository for composit backend."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from composit.core.timezone import utcnow
from composit.models.session import Session


class SessionRepository:
    """Repository for client Session entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, session_id: str) -> Session | None:
        """Retrieve client session by id."""
        result = await self.session.execute(select(Session).where(Session.id == session_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def touch_or_create(
        self, session_id: str, user_agent: str | None = None, ip_hash: str | None = None
    ) -> Session:
        """Create the session row on first contact, otherwise bump last_active_at.

        Args:
            session_id: Client-generated session id
            user_agent: Client User-Agent (stored on creation only)
            ip_hash: Hashed client address (stored on creation only)

        Returns:
            The existing or newly created session
        """
        client_session = await self.get_by_id(session_id)
        if client_session is None:
            client_session = Session(id=session_id, user_agent=user_agent, ip_hash=ip_hash)
        else:
            client_session.last_active_at = utcnow()
        self.session.add(client_session)
        await self.session.flush()
        return client_session
