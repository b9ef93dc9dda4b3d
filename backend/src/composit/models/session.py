"""Session entity - pseudonymous client identity."""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from composit.core.timezone import utcnow


class Session(SQLModel, table=True):
    """Session owns assets and generations; there is no authentication behind it."""

    __tablename__ = "sessions"  # type: ignore[assignment]

    id: str = Field(primary_key=True, max_length=64)  # client-generated cuid
    created_at: datetime = Field(default_factory=utcnow)
    last_active_at: Optional[datetime] = Field(default=None)
    user_agent: Optional[str] = Field(default=None)
    ip_hash: Optional[str] = Field(default=None, max_length=255)
