# services/map_stats.py
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from margin.models import MeaningCategory
from margin.schemas import MapStats, TagCategoryCount, TagCount, TagNetMeaning
from margin.utils import normalize_tag

POSITIVE = (MeaningCategory.meaningful.value, MeaningCategory.joyful.value)
NEGATIVE = (MeaningCategory.painful_significant.value, MeaningCategory.empty_numb.value)


def _category_key(entry) -> Optional[str]:
    try:
        return MeaningCategory(getattr(entry, "category", None)).value
    except ValueError:
        return None


def _normalized_tags(entry) -> Iterable[str]:
    # an entry carries a tag or it doesn't; repeats count once
    seen = set()
    for tag in getattr(entry, "tags", None) or []:
        t = normalize_tag(tag)
        if t and t not in seen:
            seen.add(t)
            yield t


def count_by_category(entries: Iterable) -> Dict[str, int]:
    counts = {c.value: 0 for c in MeaningCategory}
    for entry in entries:
        key = _category_key(entry)
        if key:
            counts[key] += 1
    return counts


def count_tags(entries: Iterable) -> List[TagCount]:
    """Tag frequency, count desc then tag asc."""
    tally: Dict[str, int] = {}
    for entry in entries:
        for tag in _normalized_tags(entry):
            tally[tag] = tally.get(tag, 0) + 1
    ordered = sorted(tally.items(), key=lambda kv: (-kv[1], kv[0]))
    return [TagCount(tag=t, count=c) for t, c in ordered]


def count_tags_by_category(entries: Iterable) -> List[TagCategoryCount]:
    rows: Dict[str, Dict[str, int]] = {}
    for entry in entries:
        key = _category_key(entry)
        if not key:
            continue
        for tag in _normalized_tags(entry):
            rec = rows.setdefault(tag, {c.value: 0 for c in MeaningCategory})
            rec[key] += 1
    return [TagCategoryCount(tag=t, **rows[t]) for t in sorted(rows)]


def compute_net_meaning(entries: Iterable) -> List[TagNetMeaning]:
    """
    net_meaning(tag) = count(meaningful + joyful) - count(painful_significant + empty_numb)

    Sorted by |net_meaning| desc, total desc, tag asc, so the most polarized
    tags surface first regardless of sign.
    """
    out: List[TagNetMeaning] = []
    for tc in count_tags_by_category(entries):
        pos = sum(getattr(tc, c) for c in POSITIVE)
        neg = sum(getattr(tc, c) for c in NEGATIVE)
        out.append(TagNetMeaning(tag=tc.tag, net_meaning=pos - neg, total=pos + neg))
    out.sort(key=lambda r: (-abs(r.net_meaning), -r.total, r.tag))
    return out


def compute_map_stats(entries: Sequence, top_n: int = 10) -> MapStats:
    return MapStats(
        total_entries=len(entries),
        by_category=count_by_category(entries),
        top_tags=count_tags(entries)[:top_n],
        tag_net_meaning=compute_net_meaning(entries),
    )
