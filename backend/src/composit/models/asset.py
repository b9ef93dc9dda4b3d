"""Asset entity - uploaded input image."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from composit.core.timezone import utcnow

PENDING_STORAGE_KEY = "pending"


class AssetRole(str, Enum):
    """Role an input image plays in a generation."""

    MODEL = "model"
    GARMENT = "garment"
    FABRIC = "fabric"
    STYLE_REF = "style_ref"


class Asset(SQLModel, table=True):
    """Asset is an uploaded model, garment, fabric or style-reference image.

    Created with a placeholder storage key so the id exists before the storage
    path (which embeds it) is computed; the real key is written after upload.
    """

    __tablename__ = "assets"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    session_id: str = Field(foreign_key="sessions.id", index=True, ondelete="CASCADE")
    role: AssetRole
    filename: str
    mime: str = Field(max_length=100)
    size_bytes: int
    width: Optional[int] = Field(default=None)
    height: Optional[int] = Field(default=None)
    storage_key: str = Field(default=PENDING_STORAGE_KEY)
    deleted_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
