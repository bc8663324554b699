"""FastAPI application for the personal knowledge graph."""

from dotenv import load_dotenv

load_dotenv()

from contextlib import asynccontextmanager  # noqa: E402
from dataclasses import dataclass  # noqa: E402
from datetime import datetime, timezone  # noqa: E402
from typing import Any, Literal  # noqa: E402

import structlog  # noqa: E402
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from pydantic import BaseModel, Field  # noqa: E402

from ..config import SEARCH_DEFAULT_LIMIT  # noqa: E402
from ..connectors import Evaluation, PracticeSession, SessionSyncConnector  # noqa: E402
from ..embeddings import NodeEmbeddingIndexer  # noqa: E402
from ..errors import (  # noqa: E402
    MosError,
    NotFoundError,
    ProviderError,
    StoreError,
    ValidationError,
)
from ..generation import NodeSummarizer, complete  # noqa: E402
from ..graph import (  # noqa: E402
    CreateEdgeInput,
    CreateNodeInput,
    GraphEngine,
    Node,
    PracticeSuggester,
    TraversalDirection,
    node_slug,
)
from ..logging_config import configure_logging  # noqa: E402
from ..retrieval import HybridSearchEngine  # noqa: E402
from ..storage import PgStore, Store, create_store  # noqa: E402

logger = structlog.get_logger()


@dataclass
class Services:
    """Everything a request handler needs, built once per application."""

    store: Store
    engine: GraphEngine
    search: HybridSearchEngine
    summarizer: NodeSummarizer
    suggester: PracticeSuggester
    connector: SessionSyncConnector


def build_services(store: Store, search: HybridSearchEngine | None = None, complete_fn=complete) -> Services:
    engine = GraphEngine(store)
    search = search or HybridSearchEngine(store)
    return Services(
        store=store,
        engine=engine,
        search=search,
        summarizer=NodeSummarizer(engine, search, complete=complete_fn),
        suggester=PracticeSuggester(store),
        connector=SessionSyncConnector(engine),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    owned_store: PgStore | None = None

    if getattr(app.state, "services", None) is None:
        configure_logging()
        logger.info("starting_application")
        store = create_store()
        if isinstance(store, PgStore):
            await store.connect()
            owned_store = store
        app.state.services = build_services(store)

    yield

    if owned_store:
        await owned_store.close()
    logger.info("application_shutdown")


# Request models

class CreateNodeRequest(BaseModel):
    type: str
    title: str = Field(..., min_length=1)
    slug: str | None = Field(default=None, description="Derived from the title when omitted")
    content: str | None = None
    summary: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class UpdateNodeRequest(BaseModel):
    type: str | None = None
    title: str | None = None
    content: str | None = None
    summary: str | None = None
    metadata: dict[str, Any] | None = None


class CreateEdgeRequest(BaseModel):
    source_id: str
    target_id: str
    edge_type: str = "related_to"
    custom_label: str | None = None
    weight: float = 1.0
    summary: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    limit: int = Field(default=SEARCH_DEFAULT_LIMIT, ge=1, le=100)
    mode: Literal["hybrid", "keyword"] = "hybrid"


class AskRequest(BaseModel):
    topic: str = Field(..., min_length=1)


class SessionPayload(BaseModel):
    id: str
    user_id: str
    prompt_id: str
    mode: str
    status: str
    started_at: str
    ended_at: str | None = None
    time_spent_sec: int | None = None


class EvaluationPayload(BaseModel):
    id: str
    overall_score: float
    component_score: float
    scaling_score: float
    reliability_score: float
    tradeoff_score: float
    components_found: list[str] = Field(default_factory=list)
    components_missing: list[str] = Field(default_factory=list)
    scaling_gaps: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class SyncSessionRequest(BaseModel):
    session: SessionPayload
    evaluation: EvaluationPayload


# Dependencies

def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user(x_user_id: str = Header(..., min_length=1)) -> str:
    """Caller identity. Authentication happens in front of this service."""
    return x_user_id


async def _owned_node(services: Services, node_id: str, user_id: str) -> Node:
    node = await services.engine.get_node(node_id)
    if node is None or node.user_id != user_id:
        raise HTTPException(status_code=404, detail=f"Node {node_id} not found")
    return node


def _status_for(error: MosError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ValidationError):
        return 422
    if isinstance(error, StoreError):
        return 500
    if isinstance(error, ProviderError):
        return 502
    return 500


async def mos_error_handler(request: Request, exc: MosError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.error("request_failed", path=request.url.path, error=str(exc), status=status)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


def create_app(services: Services | None = None) -> FastAPI:
    app = FastAPI(
        title="Personal Knowledge Graph API",
        description="Knowledge graph with hybrid search and practice-session sync",
        version="0.1.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services
    app.add_exception_handler(MosError, mos_error_handler)

    @app.get("/health")
    async def health_check(services: Services = Depends(get_services)):
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "store": type(services.store).__name__,
        }

    # Nodes

    @app.get("/nodes")
    async def list_nodes(
        type: str | None = None,
        search: str | None = None,
        limit: int = Query(default=50, ge=1, le=200),
        offset: int = Query(default=0, ge=0),
        user_id: str = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        nodes = await services.engine.list_nodes(
            user_id=user_id, type=type, search=search, limit=limit, offset=offset
        )
        return {"nodes": [n.to_dict() for n in nodes]}

    @app.post("/nodes", status_code=201)
    async def create_node(
        request: CreateNodeRequest,
        user_id: str = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        node = await services.engine.create_node(
            CreateNodeInput(
                user_id=user_id,
                type=request.type,
                slug=request.slug or node_slug(request.title),
                title=request.title,
                content=request.content,
                summary=request.summary,
                metadata=request.metadata,
            )
        )

        try:
            indexer = NodeEmbeddingIndexer(services.store, services.search.get_embedder())
            await indexer.index_node(node)
        except Exception as e:
            # Node is saved; it stays reachable through keyword search
            logger.warning("node_embedding_skipped", node_id=node.id, error=str(e))

        return node.to_dict()

    @app.get("/nodes/{node_id}")
    async def get_node(
        node_id: str,
        user_id: str = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        await _owned_node(services, node_id, user_id)
        detail = await services.engine.get_node_with_edges(node_id)
        if detail is None:
            raise HTTPException(status_code=404, detail=f"Node {node_id} not found")
        return detail.to_dict()

    @app.patch("/nodes/{node_id}")
    async def update_node(
        node_id: str,
        request: UpdateNodeRequest,
        user_id: str = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        await _owned_node(services, node_id, user_id)
        node = await services.engine.update_node(node_id, **request.model_dump(exclude_unset=True))
        return node.to_dict()

    @app.delete("/nodes/{node_id}")
    async def delete_node(
        node_id: str,
        user_id: str = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        await _owned_node(services, node_id, user_id)
        await services.engine.delete_node(node_id)
        return {"deleted": node_id}

    @app.get("/nodes/{node_id}/connections")
    async def get_connections(
        node_id: str,
        depth: int = Query(default=1, ge=0, le=3),
        direction: TraversalDirection = TraversalDirection.BOTH,
        user_id: str = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        await _owned_node(services, node_id, user_id)
        connections = await services.engine.get_connections(node_id, depth=depth, direction=direction)
        return {"connections": [c.to_dict() for c in connections]}

    # Edges

    @app.post("/edges", status_code=201)
    async def create_edge(
        request: CreateEdgeRequest,
        user_id: str = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        edge_input = CreateEdgeInput(user_id=user_id, **request.model_dump())
        await _owned_node(services, request.source_id, user_id)
        await _owned_node(services, request.target_id, user_id)
        edge = await services.engine.create_edge(edge_input)
        return edge.to_dict()

    @app.delete("/edges/{edge_id}")
    async def delete_edge(
        edge_id: str,
        user_id: str = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        edge = await services.engine.get_edge(edge_id)
        if edge is None or edge.user_id != user_id:
            raise HTTPException(status_code=404, detail=f"Edge {edge_id} not found")
        await services.engine.delete_edge(edge_id)
        return {"deleted": edge_id}

    # Search and generation

    @app.post("/search")
    async def search(
        request: SearchRequest,
        user_id: str = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        if request.mode == "keyword":
            results = await services.search.search_nodes(request.query, user_id, request.limit)
        else:
            results = await services.search.hybrid_search(request.query, user_id, request.limit)
        return {"query": request.query, "results": [r.to_dict() for r in results]}

    @app.post("/ask")
    async def ask(
        request: AskRequest,
        user_id: str = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        answer = await services.summarizer.what_do_i_know(user_id, request.topic)
        return {"topic": request.topic, "answer": answer}

    @app.get("/crib/{node_id}")
    async def crib_sheet(
        node_id: str,
        user_id: str = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        await _owned_node(services, node_id, user_id)
        sheet = await services.summarizer.generate_crib_sheet(user_id, node_id)
        return {"node_id": node_id, "crib_sheet": sheet}

    @app.get("/suggestions")
    async def suggestions(
        user_id: str = Depends(current_user),
        services: Services = Depends(get_services),
    ):
        ranked = await services.suggester.suggest(user_id)
        return {"suggestions": [s.to_dict() for s in ranked]}

    # Sync

    @app.post("/sync/sessions")
    async def sync_session(
        request: SyncSessionRequest,
        services: Services = Depends(get_services),
    ):
        """Project an evaluated practice session into its owner's graph."""
        result = await services.connector.sync_session_to_mos(
            PracticeSession.from_dict(request.session.model_dump()),
            Evaluation.from_dict(request.evaluation.model_dump()),
        )
        return result.to_dict()

    return app


app = create_app()
