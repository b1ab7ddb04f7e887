# services/sessions.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from margin.models import PracticeSession, SessionStatus, UserRating
from margin.utils import _now, new_id


class InvalidSessionTransition(ValueError):
    """Raised when a terminal session is completed or abandoned again."""


def _live():
    return PracticeSession.deleted_at.is_(None)


async def start_session(db: AsyncSession, practice_id: str) -> PracticeSession:
    now = _now()
    s = PracticeSession(
        id=new_id(),
        practice_id=practice_id,
        started_at=now,
        status=SessionStatus.started,
        created_at=now,
        updated_at=now,
    )
    db.add(s)
    await db.commit()
    return s


async def get_session(db: AsyncSession, session_id: str) -> PracticeSession | None:
    return (await db.execute(
        select(PracticeSession).where(PracticeSession.id == session_id, _live())
    )).scalars().first()


async def _transition(db: AsyncSession, session_id: str, target: SessionStatus) -> PracticeSession | None:
    s = await get_session(db, session_id)
    if not s:
        return None
    if s.status != SessionStatus.started:
        raise InvalidSessionTransition(f"session {session_id} is already {SessionStatus(s.status).value}")
    now = _now()
    s.status = target
    # completed_at is set iff completed
    s.completed_at = now if target == SessionStatus.completed else None
    s.updated_at = now
    return s


async def complete_session(
    db: AsyncSession,
    session_id: str,
    user_rating: Optional[UserRating] = None,
    notes: Optional[str] = None,
) -> PracticeSession | None:
    s = await _transition(db, session_id, SessionStatus.completed)
    if s is None:
        return None
    s.user_rating = UserRating(user_rating) if user_rating else None
    s.notes = notes or None
    await db.commit()
    return s


async def abandon_session(db: AsyncSession, session_id: str) -> PracticeSession | None:
    s = await _transition(db, session_id, SessionStatus.abandoned)
    if s is not None:
        await db.commit()
    return s


async def delete_session(db: AsyncSession, session_id: str) -> bool:
    s = await get_session(db, session_id)
    if not s:
        return False
    now = _now()
    s.deleted_at = now
    s.updated_at = now
    await db.commit()
    return True


async def get_all_sessions(db: AsyncSession) -> list[PracticeSession]:
    return list((await db.execute(
        select(PracticeSession).where(_live()).order_by(PracticeSession.started_at.desc())
    )).scalars().all())


async def list_sessions(db: AsyncSession, status: Optional[SessionStatus] = None) -> list[PracticeSession]:
    stmt = select(PracticeSession).where(_live())
    if status is not None:
        stmt = stmt.where(PracticeSession.status == SessionStatus(status))
    return list((await db.execute(stmt.order_by(PracticeSession.started_at.desc()))).scalars().all())


async def count_completed_practices(db: AsyncSession) -> int:
    return int((await db.execute(
        select(func.count()).select_from(PracticeSession).where(
            _live(), PracticeSession.status == SessionStatus.completed
        )
    )).scalar_one())


async def get_first_practice_at(db: AsyncSession) -> Optional[datetime]:
    """Earliest start among completed sessions; anchors fragment age buckets."""
    return (await db.execute(
        select(func.min(PracticeSession.started_at)).where(
            _live(), PracticeSession.status == SessionStatus.completed
        )
    )).scalar_one_or_none()
