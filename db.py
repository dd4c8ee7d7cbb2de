# db.py
# Durable records (SQLModel): email capture + permanent transformation rows.
# These outlive the 24h KV entries; nothing keeps the two in sync.
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, func
from sqlmodel import SQLModel, Session, create_engine, select

from models import Transformation, User
from settings import settings

logger = logging.getLogger(__name__)

DB_URL = settings.database_url
engine = create_engine(
    DB_URL,
    connect_args={"check_same_thread": False} if DB_URL.startswith("sqlite") else {},
)


def init_db(bind=None):
    SQLModel.metadata.create_all(bind or engine)


def upsert_user(session: Session, email: str, name: Optional[str] = None,
                count_transform: bool = True) -> User:
    now = datetime.now(timezone.utc)
    user = session.get(User, email)
    if user is None:
        user = User(email=email, name=name or "Friend", first_seen=now, last_seen=now,
                    transform_count=1 if count_transform else 0)
    else:
        user.last_seen = now
        if name:
            user.name = name
        if count_transform:
            user.transform_count += 1
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def record_transformation(session: Session, job_id: str, short_id: str, *,
                          email: Optional[str] = None, name: Optional[str] = None,
                          original_key: Optional[str] = None) -> Transformation:
    row = Transformation(
        id=job_id,
        short_id=short_id,
        email=email,
        name=name or "Friend",
        original_key=original_key,
    )
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def update_transformation(session: Session, job_id: str, **fields) -> Optional[Transformation]:
    row = session.get(Transformation, job_id)
    if not row:
        return None
    for k, v in fields.items():
        setattr(row, k, v)
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def durable_image_url(session: Session, job_id: str) -> Optional[str]:
    row = session.get(Transformation, job_id)
    return row.transformed_url if row else None


def list_users(session: Session) -> List[User]:
    return list(session.exec(select(User).order_by(User.last_seen.desc())).all())


def list_transformations(session: Session) -> List[Transformation]:
    return list(session.exec(select(Transformation)).all())


def truncate_all(session: Session) -> dict:
    counts = {
        "db_transformations": session.exec(select(func.count()).select_from(Transformation)).one(),
        "db_users": session.exec(select(func.count()).select_from(User)).one(),
    }
    session.exec(delete(Transformation))
    session.exec(delete(User))
    session.commit()
    return counts
