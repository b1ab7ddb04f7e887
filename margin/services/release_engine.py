"""
Pure, deterministic fragment release engine.

No side effects and no I/O: given an engine state snapshot and a supplied
random draw, decide whether a fragment is released and from which voice.
Gates are evaluated in a fixed order and the first failing gate wins.

The concrete fragment within the chosen voice is picked by the fragment
store (see ``margin.services.fragments``).
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Mapping, Optional

from margin.models import FragmentVoice
from margin.schemas import (
    FragmentEngineState, FragmentReleaseResult, ReleaseReveal, ReleaseSkip, SkipReason,
)

# ------------------------------------------------------------
# Configuration
# ------------------------------------------------------------
MIN_PRACTICES = 3
COOLDOWN = timedelta(hours=48)
MAX_REVEALS_PER_WEEK = 2
# ~0.18 yields roughly 2 reveals per week with daily practice
BASE_PROBABILITY = 0.18
WEIGHT_TOLERANCE = 1e-4

VOICES = tuple(FragmentVoice)

# weeks since first practice -> voice weights; every bucket sums to 1.0
VOICE_WEIGHTS: Dict[str, Dict[FragmentVoice, float]] = {
    # first 8 weeks: mostly observer
    "0-8": {
        FragmentVoice.observer: 0.5,
        FragmentVoice.pattern_keeper: 0.2,
        FragmentVoice.naturalist: 0.2,
        FragmentVoice.witness: 0.1,
    },
    "9-26": {
        FragmentVoice.observer: 0.3,
        FragmentVoice.pattern_keeper: 0.3,
        FragmentVoice.naturalist: 0.2,
        FragmentVoice.witness: 0.2,
    },
    "27-52": {
        FragmentVoice.observer: 0.2,
        FragmentVoice.pattern_keeper: 0.3,
        FragmentVoice.naturalist: 0.25,
        FragmentVoice.witness: 0.25,
    },
    "53+": {
        FragmentVoice.observer: 0.15,
        FragmentVoice.pattern_keeper: 0.25,
        FragmentVoice.naturalist: 0.3,
        FragmentVoice.witness: 0.3,
    },
}


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------
def get_age_bucket(weeks_since_first: int) -> str:
    if weeks_since_first <= 8:
        return "0-8"
    if weeks_since_first <= 26:
        return "9-26"
    if weeks_since_first <= 52:
        return "27-52"
    return "53+"


def weeks_between(start: datetime, end: datetime) -> int:
    return (end - start) // timedelta(weeks=1)


def is_cooldown_complete(last_reveal_at: Optional[datetime], now: datetime) -> bool:
    if last_reveal_at is None:
        return True
    return now - last_reveal_at >= COOLDOWN


def validate_weights() -> tuple[bool, list[str]]:
    errors: list[str] = []
    for bucket, weights in VOICE_WEIGHTS.items():
        total = sum(weights.values())
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            errors.append(f'Bucket "{bucket}" weights sum to {total}, expected 1.0')
    return (not errors, errors)


# ------------------------------------------------------------
# Voice sampling
# ------------------------------------------------------------
def select_voice(
    weights: Mapping[FragmentVoice, float],
    available_counts: Mapping[FragmentVoice, int],
    random_value: float,
) -> Optional[FragmentVoice]:
    """
    Weighted pick among voices that still have unrevealed fragments.

    Weights are renormalized over the available voices only; voices are
    walked in enumeration order and the first whose cumulative weight
    exceeds ``random_value * total`` wins.
    """
    available = [v for v in VOICES if available_counts.get(v, 0) > 0]
    if not available:
        return None

    total = sum(weights.get(v, 0.0) for v in available)
    if total <= 0:
        return None

    target = random_value * total
    cumulative = 0.0
    for voice in available:
        cumulative += weights.get(voice, 0.0)
        if target < cumulative:
            return voice

    # float rounding can leave target == total
    return available[-1]


def select_voice_for_state(state: FragmentEngineState, random_value: float) -> Optional[FragmentVoice]:
    weeks = weeks_between(state.first_practice_at, state.now) if state.first_practice_at else 0
    weights = VOICE_WEIGHTS[get_age_bucket(weeks)]
    return select_voice(weights, state.unrevealed_counts_by_voice, random_value)


# ------------------------------------------------------------
# Main engine
# ------------------------------------------------------------
def _skip(reason: SkipReason) -> ReleaseSkip:
    return ReleaseSkip(reason=reason)


def should_release(
    state: FragmentEngineState,
    random_value: float,
    fragments_enabled: bool = True,
    voice_value: Optional[float] = None,
) -> FragmentReleaseResult:
    """
    Decide whether a fragment should be released.

    ``random_value`` in [0, 1) drives the probability gate. Once it passes,
    ``random_value / BASE_PROBABILITY`` is itself uniform on [0, 1) and is
    reused as the voice draw unless ``voice_value`` is supplied.
    """
    if not fragments_enabled:
        return _skip(SkipReason.fragments_disabled)

    if state.practices_completed < MIN_PRACTICES:
        return _skip(SkipReason.insufficient_practices)

    if not is_cooldown_complete(state.last_reveal_at, state.now):
        return _skip(SkipReason.cooldown_active)

    if state.reveals_in_last_7_days >= MAX_REVEALS_PER_WEEK:
        return _skip(SkipReason.weekly_cap_reached)

    if sum(state.unrevealed_counts_by_voice.values()) <= 0:
        return _skip(SkipReason.no_fragments_available)

    if random_value >= BASE_PROBABILITY:
        return _skip(SkipReason.probability_gate)

    draw = voice_value if voice_value is not None else random_value / BASE_PROBABILITY
    voice = select_voice_for_state(state, draw)
    if voice is None:
        return _skip(SkipReason.no_fragments_available)

    return ReleaseReveal(voice=voice)
