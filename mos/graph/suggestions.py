"""Practice suggestions - concepts that have not been practiced recently."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from ..config import STALE_AFTER_DAYS, SUGGESTIONS_LIMIT
from ..storage.store import EDGES, NODES, Store
from .models import EdgeType, NodeType

logger = structlog.get_logger()

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class PracticeSuggestion:
    """A concept worth practising, with how long it has been neglected."""

    concept_id: str
    title: str
    slug: str
    last_practiced: datetime | None
    days_since_practice: int | None
    is_stale: bool
    from_sds: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "concept_id": self.concept_id,
            "title": self.title,
            "slug": self.slug,
            "last_practiced": self.last_practiced.isoformat() if self.last_practiced else None,
            "days_since_practice": self.days_since_practice,
            "is_stale": self.is_stale,
            "from_sds": self.from_sds,
        }


def rank_practice_suggestions(
    concepts: list[dict[str, Any]],
    practiced_edges: list[dict[str, Any]],
    now: datetime,
    stale_after_days: int = STALE_AFTER_DAYS,
    limit: int = SUGGESTIONS_LIMIT,
) -> list[PracticeSuggestion]:
    """Rank stale concepts: never practiced first, then longest ago first.

    Args:
        concepts: Concept node records (id, title, slug, metadata)
        practiced_edges: practiced_at edge records (target_id, created_at)
        now: Reference time
        stale_after_days: A concept practiced within this window is not stale
        limit: Maximum suggestions returned
    """
    last_practiced: dict[str, datetime] = {}
    for edge in practiced_edges:
        target = str(edge["target_id"])
        created = edge["created_at"]
        if target not in last_practiced or created > last_practiced[target]:
            last_practiced[target] = created

    stale_cutoff = now - timedelta(days=stale_after_days)

    suggestions = []
    for concept in concepts:
        practiced = last_practiced.get(str(concept["id"]))
        days_since = (
            int((now - practiced).total_seconds() // SECONDS_PER_DAY)
            if practiced
            else None
        )
        suggestions.append(
            PracticeSuggestion(
                concept_id=str(concept["id"]),
                title=concept["title"],
                slug=concept["slug"],
                last_practiced=practiced,
                days_since_practice=days_since,
                is_stale=practiced is None or practiced < stale_cutoff,
                from_sds=(concept.get("metadata") or {}).get("source") == "sds",
            )
        )

    stale = [s for s in suggestions if s.is_stale]
    stale.sort(
        key=lambda s: (
            s.days_since_practice is not None,
            -(s.days_since_practice or 0),
        )
    )
    return stale[:limit]


class PracticeSuggester:
    """Loads a user's concepts and practice history and ranks them."""

    def __init__(
        self,
        store: Store,
        stale_after_days: int = STALE_AFTER_DAYS,
        limit: int = SUGGESTIONS_LIMIT,
    ):
        self.store = store
        self.stale_after_days = stale_after_days
        self.limit = limit

    async def suggest(self, user_id: str, now: datetime | None = None) -> list[PracticeSuggestion]:
        concepts = await self.store.scan(
            NODES,
            {"user_id": user_id, "type": NodeType.CONCEPT.value},
            columns=("id", "title", "slug", "metadata", "updated_at"),
            order_by="updated_at",
        )
        if not concepts:
            return []

        edges = await self.store.scan(
            EDGES,
            {"user_id": user_id, "edge_type": EdgeType.PRACTICED_AT.value},
            columns=("target_id", "created_at", "metadata"),
        )

        suggestions = rank_practice_suggestions(
            concepts,
            edges,
            now=now or datetime.now(timezone.utc),
            stale_after_days=self.stale_after_days,
            limit=self.limit,
        )
        logger.info(
            "ranked_practice_suggestions",
            user_id=user_id,
            concepts=len(concepts),
            suggestions=len(suggestions),
        )
        return suggestions
