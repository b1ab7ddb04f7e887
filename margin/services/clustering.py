"""
Deterministic tag clustering over meaning entries.

Tags that co-occur across entries are linked when their Jaccard similarity
(over the sets of entry ids carrying each tag) reaches a threshold; each
connected component of at least two tags is a cluster.

Every traversal runs in sorted lexical order so identical input always
yields identical clusters, tag order and ids.

Usage:
    from margin.services.clustering import compute_clusters
    clusters = compute_clusters(entries, threshold=0.3, max_clusters=5)
"""
from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Sequence, Set

from margin.schemas import Cluster
from margin.utils import normalize_tag

DEFAULT_THRESHOLD = 0.3
DEFAULT_MAX_CLUSTERS = 5


def _entry_tag_set(entry) -> Set[str]:
    out: Set[str] = set()
    for tag in getattr(entry, "tags", None) or []:
        t = normalize_tag(tag)
        if t:
            out.add(t)
    return out


def build_tag_index(entries: Iterable) -> Dict[str, Set[str]]:
    """tag -> set of entry ids containing it."""
    index: Dict[str, Set[str]] = {}
    for entry in entries:
        for tag in _entry_tag_set(entry):
            index.setdefault(tag, set()).add(str(entry.id))
    return index


def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a and not b:
        return 0.0
    inter = len(a & b)
    union = len(a) + len(b) - inter
    return inter / union if union else 0.0


def build_similarity_graph(index: Dict[str, Set[str]], threshold: float) -> Dict[str, Set[str]]:
    tags = sorted(index)
    graph: Dict[str, Set[str]] = {t: set() for t in tags}
    for i, a in enumerate(tags):
        for b in tags[i + 1:]:
            if jaccard(index[a], index[b]) >= threshold:
                graph[a].add(b)
                graph[b].add(a)
    return graph


def connected_components(graph: Dict[str, Set[str]]) -> List[List[str]]:
    """BFS components; start tags and neighbours are visited in sorted order."""
    seen: Set[str] = set()
    components: List[List[str]] = []
    for start in sorted(graph):
        if start in seen:
            continue
        seen.add(start)
        component: List[str] = []
        queue = deque([start])
        while queue:
            tag = queue.popleft()
            component.append(tag)
            for nb in sorted(graph.get(tag, ())):
                if nb not in seen:
                    seen.add(nb)
                    queue.append(nb)
        components.append(sorted(component))
    return components


def count_entries_with_all_tags(entries: Iterable, tags: Sequence[str]) -> int:
    if not tags:
        return 0
    wanted = set(tags)
    return sum(1 for e in entries if wanted <= _entry_tag_set(e))


def compute_clusters(
    entries: Sequence,
    threshold: float = DEFAULT_THRESHOLD,
    max_clusters: int = DEFAULT_MAX_CLUSTERS,
) -> List[Cluster]:
    if not entries:
        return []

    # a tag seen in fewer than 2 entries cannot co-occur meaningfully
    index = {t: ids for t, ids in build_tag_index(entries).items() if len(ids) >= 2}
    if not index:
        return []

    components = [c for c in connected_components(build_similarity_graph(index, threshold)) if len(c) >= 2]

    scored = [
        (count_entries_with_all_tags(entries, tags), tags)
        for tags in components
    ]
    scored.sort(key=lambda pair: (-pair[0], -len(pair[1]), pair[1][0]))

    return [
        Cluster(id=i, tags=tags, entry_count=count)
        for i, (count, tags) in enumerate(scored[:max(0, max_clusters)])
    ]


def get_entries_for_cluster(entries: Iterable, cluster: Cluster) -> list:
    wanted = {t.lower() for t in cluster.tags}
    return [e for e in entries if wanted <= _entry_tag_set(e)]
