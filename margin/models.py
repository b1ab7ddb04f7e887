from sqlalchemy import (
    Column, Integer, String, Boolean, Text, DateTime, JSON, UniqueConstraint, Index
)
from sqlalchemy import Enum as SAEnum
from .database import Base
import enum


class MeaningCategory(str, enum.Enum):
    meaningful = "meaningful"
    joyful = "joyful"
    painful_significant = "painful_significant"
    empty_numb = "empty_numb"

class TimeOfDay(str, enum.Enum):
    morning = "morning"
    afternoon = "afternoon"
    evening = "evening"
    night = "night"

class SessionStatus(str, enum.Enum):
    started = "started"
    completed = "completed"
    abandoned = "abandoned"

class UserRating(str, enum.Enum):
    easy = "easy"
    neutral = "neutral"
    hard = "hard"

class PracticeMode(str, enum.Enum):
    focus = "focus"
    open = "open"
    somatic = "somatic"
    relational = "relational"
    perception = "perception"

class FragmentVoice(str, enum.Enum):
    # declaration order is the sampling walk order
    observer = "observer"
    pattern_keeper = "pattern_keeper"
    naturalist = "naturalist"
    witness = "witness"


def _enum(cls):
    # store .value so the column matches the remote string contract
    return SAEnum(cls, native_enum=False, values_callable=lambda e: [m.value for m in e], length=32)


# ---------------------------
# MEANING ENTRIES
# ---------------------------
class MeaningEntry(Base):
    __tablename__ = "meaning_entries"

    id = Column(String(64), primary_key=True)
    category = Column(_enum(MeaningCategory), nullable=False)
    text = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)  # list[str], lowercase
    time_of_day = Column(_enum(TimeOfDay), nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False, index=True)
    deleted_at = Column(DateTime, nullable=True)  # tombstone, never hard-deleted

    def __repr__(self):
        return f"<MeaningEntry {self.id} {self.category}>"


# ---------------------------
# PRACTICES (read-only catalogue)
# ---------------------------
class Practice(Base):
    __tablename__ = "practices"

    id = Column(String(64), primary_key=True)
    title = Column(String(200), nullable=False)
    instruction = Column(Text, nullable=False)
    mode = Column(_enum(PracticeMode), nullable=False)
    difficulty = Column(Integer, nullable=False, default=1)  # 1..5
    duration_seconds = Column(Integer, nullable=True)
    contra_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class PracticeSession(Base):
    __tablename__ = "practice_sessions"

    id = Column(String(64), primary_key=True)
    practice_id = Column(String(64), nullable=False, index=True)
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)  # set iff status == completed
    status = Column(_enum(SessionStatus), nullable=False, default=SessionStatus.started)
    user_rating = Column(_enum(UserRating), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False, index=True)
    deleted_at = Column(DateTime, nullable=True)


# ---------------------------
# FRAGMENTS
# ---------------------------
class Fragment(Base):
    __tablename__ = "fragments_catalog_cache"

    id = Column(String(64), primary_key=True)  # e.g. "frag_0001"
    voice = Column(_enum(FragmentVoice), nullable=False, index=True)
    text = Column(Text, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class FragmentReveal(Base):
    __tablename__ = "fragment_reveals_local"

    id = Column(String(64), primary_key=True)
    fragment_id = Column(String(64), nullable=False)
    revealed_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False)
    synced = Column(Boolean, nullable=False, default=False)

    # a fragment is revealed at most once, ever
    __table_args__ = (
        UniqueConstraint("fragment_id", name="uq_reveal_fragment_once"),
        Index("ix_reveal_revealed_at", "revealed_at"),
    )


# ---------------------------
# SYNC STATE (key-value)
# ---------------------------
class SyncStateRecord(Base):
    __tablename__ = "sync_state"

    key = Column(String(128), primary_key=True)  # last_sync_at:<table>, fragments_catalog_version, ...
    value = Column(Text, nullable=False)
