from __future__ import annotations

import enum
from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .models import (
    FragmentVoice, MeaningCategory, PracticeMode, SessionStatus, TimeOfDay, UserRating,
)
from .utils import to_naive_utc

UtcDatetime = Annotated[datetime, AfterValidator(to_naive_utc)]


class CamelModel(BaseModel):
    """Output shapes bound by the UI: snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# =========================
# ENUMS (not persisted)
# =========================
class SyncTable(str, enum.Enum):
    meaning_entries = "meaning_entries"
    practice_sessions = "practice_sessions"
    fragments_catalog = "fragments_catalog"
    fragment_reveals = "fragment_reveals"

class SkipReason(str, enum.Enum):
    fragments_disabled = "fragments_disabled"
    insufficient_practices = "insufficient_practices"
    cooldown_active = "cooldown_active"
    weekly_cap_reached = "weekly_cap_reached"
    no_fragments_available = "no_fragments_available"
    probability_gate = "probability_gate"


# =========================
# MEANING ENTRY SCHEMAS
# =========================
class MeaningEntryBase(BaseModel):
    category: MeaningCategory
    text: Optional[str] = None
    tags: List[str] = []

class MeaningEntryRead(MeaningEntryBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    time_of_day: Optional[TimeOfDay] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

class MeaningEntryCreate(MeaningEntryBase):
    time_of_day: Optional[TimeOfDay] = None

class MeaningEntryUpdate(BaseModel):
    category: Optional[MeaningCategory] = None
    text: Optional[str] = None
    tags: Optional[List[str]] = None


# =========================
# PRACTICE / SESSION SCHEMAS
# =========================
class PracticeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    instruction: str
    mode: PracticeMode
    difficulty: int
    duration_seconds: Optional[int] = None
    contra_notes: Optional[str] = None

class PracticeSessionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    practice_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: SessionStatus
    user_rating: Optional[UserRating] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

class SessionStart(BaseModel):
    practice_id: str

class SessionComplete(BaseModel):
    user_rating: Optional[UserRating] = None
    notes: Optional[str] = None


# =========================
# FRAGMENT SCHEMAS
# =========================
class FragmentRead(BaseModel):
    """Voice is deliberately absent: it is never shown to users."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    text: str

class FragmentRevealRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    fragment_id: str
    revealed_at: datetime
    created_at: datetime

class FragmentsSetting(BaseModel):
    enabled: bool


# =========================
# MAP (engine outputs)
# =========================
class Cluster(CamelModel):
    id: int
    tags: List[str]
    entry_count: int  # entries containing ALL tags

class TagCount(CamelModel):
    tag: str
    count: int

class TagCategoryCount(BaseModel):
    # keys mirror MeaningCategory values, no camelCase
    tag: str
    meaningful: int = 0
    joyful: int = 0
    painful_significant: int = 0
    empty_numb: int = 0

class TagNetMeaning(CamelModel):
    tag: str
    net_meaning: int  # positive = meaningful+joyful, negative = painful+empty
    total: int

class MapStats(CamelModel):
    total_entries: int
    by_category: Dict[str, int]
    top_tags: List[TagCount]
    tag_net_meaning: List[TagNetMeaning]


# =========================
# FRAGMENT RELEASE ENGINE
# =========================
class FragmentEngineState(CamelModel):
    now: UtcDatetime
    practices_completed: int
    first_practice_at: Optional[UtcDatetime] = None
    last_reveal_at: Optional[UtcDatetime] = None
    reveals_in_last_7_days: int = 0
    unrevealed_counts_by_voice: Dict[FragmentVoice, int] = Field(
        default_factory=lambda: {v: 0 for v in FragmentVoice}
    )

class ReleaseReveal(CamelModel):
    type: Literal["reveal"] = "reveal"
    voice: FragmentVoice

class ReleaseSkip(CamelModel):
    type: Literal["skip"] = "skip"
    reason: SkipReason

FragmentReleaseResult = Annotated[Union[ReleaseReveal, ReleaseSkip], Field(discriminator="type")]


# =========================
# SYNC
# =========================
class SyncState(CamelModel):
    table: SyncTable
    last_sync_at: Optional[datetime] = None

class SyncResult(CamelModel):
    table: SyncTable
    pulled: int = 0
    pushed: int = 0
    conflicts_resolved: int = 0
    errors: List[str] = []

class FullSyncResult(CamelModel):
    success: bool = False
    results: List[SyncResult] = []
    total_pulled: int = 0
    total_pushed: int = 0
    total_conflicts: int = 0
    errors: List[str] = []
