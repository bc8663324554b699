"""Session sync connector - projects an evaluated practice session into the graph.

One session becomes a note node, each component the evaluation found
becomes a concept node, and the two are joined by a practiced_at edge
weighted by the component score. Every write is gated by the sync ledger
so that a repeated or resumed sync does not duplicate nodes or edges.
"""

from dataclasses import dataclass, field, fields
from typing import Any

import structlog

from ..graph import (
    CreateEdgeInput,
    CreateNodeInput,
    EdgeType,
    GraphEngine,
    NodeType,
    node_slug,
)
from .sync_ledger import SyncLedger, SyncSourceType

logger = structlog.get_logger()

SESSION_SUBTYPE = "interview"
CONCEPT_SOURCE = "sds"


def _known_fields(cls, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _num(value: float | int) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass
class PracticeSession:
    """A finished practice session as reported by the practice app."""

    id: str
    user_id: str
    prompt_id: str
    mode: str
    status: str
    started_at: str
    ended_at: str | None = None
    time_spent_sec: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PracticeSession":
        return cls(**_known_fields(cls, data))


@dataclass
class Evaluation:
    """Scores (0-100) and findings for one session's submitted answer."""

    id: str
    overall_score: float
    component_score: float
    scaling_score: float
    reliability_score: float
    tradeoff_score: float
    components_found: list[str] = field(default_factory=list)
    components_missing: list[str] = field(default_factory=list)
    scaling_gaps: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    response_id: str | None = None
    evaluated_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Evaluation":
        return cls(**_known_fields(cls, data))


@dataclass
class SyncResult:
    session_node_id: str
    concept_node_ids: list[str] = field(default_factory=list)
    edge_ids: list[str] = field(default_factory=list)
    skipped: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_node_id": self.session_node_id,
            "concept_node_ids": self.concept_node_ids,
            "edge_ids": self.edge_ids,
            "skipped": self.skipped,
        }


def render_session_content(session: PracticeSession, evaluation: Evaluation) -> str:
    """Deterministic multi-line summary of a session and its scores."""
    lines = [
        f"System Design Session ({session.mode} mode)",
        f"Status: {session.status}",
        f"Started: {session.started_at}",
    ]
    if session.ended_at:
        lines.append(f"Ended: {session.ended_at}")
    if session.time_spent_sec:
        lines.append(f"Time spent: {session.time_spent_sec}s")
    lines.extend(
        [
            f"Overall score: {_num(evaluation.overall_score)}/100",
            f"Components: {_num(evaluation.component_score)}/100",
            f"Scaling: {_num(evaluation.scaling_score)}/100",
            f"Reliability: {_num(evaluation.reliability_score)}/100",
            f"Tradeoffs: {_num(evaluation.tradeoff_score)}/100",
        ]
    )
    return "\n".join(lines)


class SessionSyncConnector:
    """Writes sessions into a user's graph through a GraphEngine.

    Runs with system privileges: the session's user_id is written
    explicitly on every node and edge. Writes are sequential. A failure
    mid-way propagates and leaves earlier writes in place; the ledger lets
    a retry resume where it stopped.
    """

    def __init__(self, engine: GraphEngine, ledger: SyncLedger | None = None):
        self.engine = engine
        self.ledger = ledger or SyncLedger(engine.store)

    async def sync_session_to_mos(
        self,
        session: PracticeSession,
        evaluation: Evaluation,
    ) -> SyncResult:
        user_id = session.user_id
        skipped = 0

        session_slug = f"sds-session-{session.id}"
        session_node = await self.engine.create_node(
            CreateNodeInput(
                user_id=user_id,
                type=NodeType.NOTE,
                slug=session_slug,
                title=f"SDS Session: {session.id[:8]}",
                content=render_session_content(session, evaluation),
                metadata={
                    "subtype": SESSION_SUBTYPE,
                    "sds_session_id": session.id,
                    "sds_evaluation_id": evaluation.id,
                    "prompt_id": session.prompt_id,
                    "overall_score": evaluation.overall_score,
                },
            )
        )

        session_is_new = await self.ledger.record(
            session.id, session_node.id, SyncSourceType.SESSION, session.id
        )
        if not session_is_new:
            skipped += 1

        result = SyncResult(session_node_id=session_node.id)

        for component in evaluation.components_found:
            if not component.strip():
                logger.warning("skipped_blank_component", session_id=session.id)
                continue
            concept_slug = node_slug(component)

            if await self.ledger.is_synced(session.id, SyncSourceType.CONCEPT, concept_slug):
                existing = await self.engine.get_node_by_slug(user_id, concept_slug)
                if existing:
                    result.concept_node_ids.append(existing.id)
                skipped += 1
                logger.debug("skipped_synced_concept", session_id=session.id, slug=concept_slug)
                continue

            concept_node = await self.engine.create_node(
                CreateNodeInput(
                    user_id=user_id,
                    type=NodeType.CONCEPT,
                    slug=concept_slug,
                    title=component,
                    metadata={"source": CONCEPT_SOURCE, "auto_created": True},
                )
            )
            result.concept_node_ids.append(concept_node.id)
            await self.ledger.record(
                session.id, concept_node.id, SyncSourceType.CONCEPT, concept_slug
            )

            edge_key = f"{session_slug}::{concept_slug}"
            if await self.ledger.is_synced(session.id, SyncSourceType.EDGE, edge_key):
                skipped += 1
                continue

            edge = await self.engine.create_edge(
                CreateEdgeInput(
                    user_id=user_id,
                    source_id=session_node.id,
                    target_id=concept_node.id,
                    edge_type=EdgeType.PRACTICED_AT,
                    weight=evaluation.component_score / 100,
                    metadata={
                        "sds_session_id": session.id,
                        "component_score": evaluation.component_score,
                    },
                )
            )

            edge_is_new = await self.ledger.record(
                session.id, edge.id, SyncSourceType.EDGE, edge_key
            )
            if not edge_is_new:
                # Another sync recorded this edge first; drop our copy
                await self.engine.delete_edge(edge.id)
                skipped += 1
                logger.warning(
                    "lost_edge_sync_race",
                    session_id=session.id,
                    edge_key=edge_key,
                    edge_id=edge.id,
                )
                continue

            result.edge_ids.append(edge.id)

        result.skipped = skipped
        logger.info(
            "synced_session",
            session_id=session.id,
            user_id=user_id,
            concepts=len(result.concept_node_ids),
            edges=len(result.edge_ids),
            skipped=skipped,
        )
        return result
