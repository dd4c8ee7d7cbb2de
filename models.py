from datetime import datetime, timezone
from typing import Optional

from sqlmodel import SQLModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    __tablename__ = "users"

    email: str = Field(primary_key=True, index=True)
    name: str = "Friend"
    first_seen: datetime = Field(default_factory=_utcnow)
    last_seen: datetime = Field(default_factory=_utcnow)
    transform_count: int = 0


class Transformation(SQLModel, table=True):
    __tablename__ = "transformations"

    id: str = Field(primary_key=True, index=True)  # Replicate prediction id
    short_id: str = Field(index=True)
    email: Optional[str] = Field(default=None, index=True)
    name: str = "Friend"
    status: str = "processing"  # processing|succeeded|failed
    error_type: Optional[str] = None
    original_key: Optional[str] = None
    transformed_key: Optional[str] = None
    transformed_url: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
