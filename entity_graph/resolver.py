"""Name resolution: map a free-text name onto an existing entity.

Resolution order, first hit wins:

1. exact canonical name (case-insensitive)
2. exact alias (case-insensitive; an alias spelled exactly like the query wins)
3. partial name match, scored:

   * prefix match:    ``500 + len(query) / len(name) * 100``
   * substring match: ``100 + len(query) / len(name) * 100``
   * plus ``min(mention_count, 50) * 0.5`` popularity bonus

   so "Black Coast" picks "Black Coast Estates" over a mid-string hit like
   "Estates", and among equal shapes the tighter, more-mentioned name wins.

Email lookup is a separate exact path used by the entity store before name
resolution; it never falls back to fuzzy matching.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple

from .errors import StorageUnavailable
from .models import Entity
from .storage import GraphStorage

logger = logging.getLogger(__name__)

EXACT_SCORE = 1000.0
PREFIX_BASE = 500.0
SUBSTRING_BASE = 100.0
LENGTH_WEIGHT = 100.0
MENTION_CAP = 50
MENTION_WEIGHT = 0.5


def score_candidate(query: str, name: str, mention_count: int = 0) -> float:
    """Score how well *name* answers *query*. 0.0 means not a match."""
    q = query.strip().lower()
    n = name.strip().lower()
    if not q or not n:
        return 0.0

    if n == q:
        score = EXACT_SCORE
    elif n.startswith(q):
        score = PREFIX_BASE + (len(q) / len(n)) * LENGTH_WEIGHT
    elif q in n:
        score = SUBSTRING_BASE + (len(q) / len(n)) * LENGTH_WEIGHT
    else:
        return 0.0

    return score + min(max(mention_count, 0), MENTION_CAP) * MENTION_WEIGHT


def rank_candidates(query: str, candidates: Iterable[Entity]) -> List[Tuple[float, Entity]]:
    """Score candidates, drop non-matches, best first.

    The sort is stable: equal scores keep the order the candidates came in.
    """
    scored = [(score_candidate(query, e.name, e.mention_count), e) for e in candidates]
    scored = [(s, e) for s, e in scored if s > 0]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return scored


class NameResolver:
    """Resolve names and emails against stored entities.

    Storage failures are logged and reported as a miss; ``last_error`` holds
    the failure of the most recent call (None when it ran cleanly).
    """

    def __init__(self, storage: GraphStorage, pool_size: int = 20) -> None:
        self.storage = storage
        self.pool_size = pool_size
        self.last_error: Optional[StorageUnavailable] = None

    def resolve(self, query: str) -> Optional[Entity]:
        """Best existing entity for *query*, or None."""
        self.last_error = None
        q = (query or "").strip()
        if not q:
            return None

        try:
            exact = self.storage.find_entities_by_name(q)
            if exact:
                return exact[0]

            by_alias = self.storage.find_entities_by_alias(q)
            if by_alias:
                for entity in by_alias:
                    if q in entity.aliases:
                        return entity
                return by_alias[0]

            pool = self.storage.find_entities_name_containing(q, limit=self.pool_size)
        except StorageUnavailable as exc:
            logger.error("Name resolution failed for %r: %s", q, exc)
            self.last_error = exc
            return None

        ranked = rank_candidates(q, pool)
        if not ranked:
            return None
        best_score, best = ranked[0]
        logger.debug("Resolved %r -> %r (score=%.1f, pool=%d)", q, best.name, best_score, len(pool))
        return best

    def find_by_email(self, email: str) -> Optional[Entity]:
        """Entity whose email equals *email* (case-insensitive), or None."""
        self.last_error = None
        e = (email or "").strip()
        if not e:
            return None
        try:
            matches = self.storage.find_entities_by_email(e)
        except StorageUnavailable as exc:
            logger.error("Email lookup failed for %r: %s", e, exc)
            self.last_error = exc
            return None
        return matches[0] if matches else None
