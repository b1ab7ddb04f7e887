# sync/rows.py
# Remote row shapes, one per synced table, with explicit field lists.
# `from_local` builds the payload we send; `to_local_values` the kwargs we write.
from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from margin.models import (
    FragmentVoice, MeaningCategory, MeaningEntry, PracticeSession,
    SessionStatus, TimeOfDay, UserRating,
)
from margin.schemas import UtcDatetime
from margin.utils import format_timestamp, normalize_tags


def _wire(v: Any) -> Any:
    if isinstance(v, datetime):
        return format_timestamp(v)
    if isinstance(v, enum.Enum):
        return v.value
    return v


class RemoteRow(BaseModel):
    # remote rows may carry columns we don't mirror locally
    model_config = ConfigDict(extra="ignore")

    def to_payload(self) -> Dict[str, Any]:
        data = self.model_dump(mode="python")
        return {k: _wire(v) for k, v in data.items()}


# ---------------------------
# meaning_entries
# ---------------------------
class RemoteMeaningEntry(RemoteRow):
    id: str
    user_id: Optional[str] = None
    category: MeaningCategory
    text: Optional[str] = None
    tags: List[str] = []
    time_of_day: Optional[TimeOfDay] = None
    created_at: UtcDatetime
    updated_at: UtcDatetime
    deleted_at: Optional[UtcDatetime] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, v):
        return normalize_tags(v if isinstance(v, list) else [])

    @classmethod
    def from_local(cls, e: MeaningEntry, user_id: str) -> "RemoteMeaningEntry":
        return cls(
            id=e.id,
            user_id=user_id,
            category=e.category,
            text=e.text,
            tags=list(e.tags or []),
            time_of_day=e.time_of_day,
            created_at=e.created_at,
            updated_at=e.updated_at,
            deleted_at=e.deleted_at,
        )

    def to_local_values(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "text": self.text,
            "tags": list(self.tags),
            "time_of_day": self.time_of_day,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "deleted_at": self.deleted_at,
        }


# ---------------------------
# practice_sessions
# ---------------------------
class RemotePracticeSession(RemoteRow):
    id: str
    user_id: Optional[str] = None
    practice_id: str
    started_at: UtcDatetime
    completed_at: Optional[UtcDatetime] = None
    status: SessionStatus
    user_rating: Optional[UserRating] = None
    notes: Optional[str] = None
    created_at: UtcDatetime
    updated_at: UtcDatetime
    deleted_at: Optional[UtcDatetime] = None

    @model_validator(mode="after")
    def _completed_at_iff_completed(self):
        if (self.status == SessionStatus.completed) != (self.completed_at is not None):
            raise ValueError("completed_at must be set exactly when status is 'completed'")
        return self

    @classmethod
    def from_local(cls, s: PracticeSession, user_id: str) -> "RemotePracticeSession":
        return cls(
            id=s.id,
            user_id=user_id,
            practice_id=s.practice_id,
            started_at=s.started_at,
            completed_at=s.completed_at,
            status=s.status,
            user_rating=s.user_rating,
            notes=s.notes,
            created_at=s.created_at,
            updated_at=s.updated_at,
            deleted_at=s.deleted_at,
        )

    def to_local_values(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"id", "user_id"})


# ---------------------------
# fragments_catalog (read-only)
# ---------------------------
class RemoteFragment(RemoteRow):
    id: str
    voice: FragmentVoice
    text: str
    enabled: bool = True
    created_at: UtcDatetime
    updated_at: UtcDatetime

    def to_local_values(self) -> Dict[str, Any]:
        return self.model_dump()


# ---------------------------
# fragment_reveals (append-only)
# ---------------------------
class RemoteFragmentReveal(RemoteRow):
    id: Optional[str] = None  # assigned by the remote on insert
    user_id: Optional[str] = None
    fragment_id: str
    revealed_at: UtcDatetime
    created_at: Optional[UtcDatetime] = None

    def insert_payload(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "fragment_id": self.fragment_id,
            "revealed_at": format_timestamp(self.revealed_at),
        }

    def to_merge_values(self) -> Dict[str, Any]:
        return {"fragment_id": self.fragment_id, "revealed_at": self.revealed_at}
