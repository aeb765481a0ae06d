"""
backend/main.py
===============

FastAPI backend for the Yoga RAG Wellness Assistant.

Provides REST API endpoints:
- POST /ask - Ask a question, get an answer with sources and safety info
- POST /feedback - Thumbs up/down on a previous answer
- GET /health - Health check endpoint
- POST /admin/reload - Reload snapshots after a rebuild

Run with:
    uvicorn backend.main:app --reload --port 5001
"""

import logging
from contextlib import asynccontextmanager
from typing import Literal, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from yogarag.config import ALLOWED_ORIGINS
from yogarag.errors import (
    CompletionError,
    CompletionTimeoutError,
    EmbeddingError,
    EmbeddingTimeoutError,
    InvalidQueryError,
    YogaRagError,
)
from yogarag.interactions import JsonlInteractionLog
from yogarag.logger import configure_logging
from yogarag.service import AnsweringPolicy, close_policy, get_policy

logger = logging.getLogger(__name__)


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class AskRequest(BaseModel):
    """Request model for the ask endpoint."""
    query: str = Field(..., max_length=2000, description="User's question")


class AskResponse(BaseModel):
    """Response model for the ask endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    answer: str = Field(..., description="Generated answer")
    sources: list[str] = Field(default_factory=list, description="Source titles, best match first")
    is_unsafe: bool = Field(..., alias="isUnsafe")
    unsafe_reasons: list[str] = Field(default_factory=list, alias="unsafeReasons")
    query_id: str = Field(..., alias="queryId")


class FeedbackRequest(BaseModel):
    """Request model for the feedback endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    query_id: str = Field(..., alias="queryId")
    feedback: Literal["up", "down"]


class FeedbackResponse(BaseModel):
    success: bool


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    chunks_loaded: int
    unsafe_intents_loaded: int
    llm_configured: bool


class ReloadResponse(BaseModel):
    chunks_loaded: int
    unsafe_intents_loaded: int


# =============================================================================
# FASTAPI APP
# =============================================================================

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Release the embedding threads on shutdown."""
    yield
    close_policy()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Yoga RAG API",
    description="Yoga wellness question answering with safety guardrails",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# Global interaction log instance (created on first request)
_interaction_log: Optional[JsonlInteractionLog] = None


def get_interaction_log() -> JsonlInteractionLog:
    """Get or create the interaction log."""
    global _interaction_log
    if _interaction_log is None:
        _interaction_log = JsonlInteractionLog()
    return _interaction_log


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/", tags=["System"])
def root():
    return {"message": "Yoga RAG Server Running"}


@app.get("/health", response_model=HealthResponse, tags=["System"])
def health_check(policy: AnsweringPolicy = Depends(get_policy)):
    """
    Health check endpoint.

    "degraded" means the chunk index is empty (not built yet): the API still
    answers, but every safe question gets the "I don't know" fallback.
    """
    chunks = policy.retriever.chunk_count
    return HealthResponse(
        status="healthy" if chunks else "degraded",
        chunks_loaded=chunks,
        unsafe_intents_loaded=len(policy.classifier.intents),
        llm_configured=policy.llm_configured,
    )


@app.post("/ask", response_model=AskResponse, tags=["Chat"])
def ask(
    request: AskRequest,
    policy: AnsweringPolicy = Depends(get_policy),
    interaction_log: JsonlInteractionLog = Depends(get_interaction_log),
):
    """
    Ask a question.

    Unsafe questions get a supportive refusal and no sources. Questions the
    knowledge base can't answer get a fixed "I don't know" answer.
    """
    try:
        response = policy.answer(request.query)
    except InvalidQueryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (EmbeddingTimeoutError, CompletionTimeoutError) as e:
        raise HTTPException(status_code=504, detail=str(e))
    except (EmbeddingError, CompletionError) as e:
        raise HTTPException(status_code=502, detail=str(e))
    except YogaRagError as e:
        logger.exception("Failed to answer query")
        raise HTTPException(status_code=500, detail=str(e))

    record = interaction_log.append(response.to_record(request.query))

    return AskResponse(
        answer=response.answer,
        sources=[] if response.is_unsafe else response.sources,
        is_unsafe=response.is_unsafe,
        unsafe_reasons=response.unsafe_reasons,
        query_id=record.id,
    )


@app.post("/feedback", response_model=FeedbackResponse, tags=["Chat"])
def feedback(
    request: FeedbackRequest,
    interaction_log: JsonlInteractionLog = Depends(get_interaction_log),
):
    """Attach thumbs up/down feedback to a previous answer."""
    if not interaction_log.set_feedback(request.query_id, request.feedback):
        raise HTTPException(status_code=404, detail="Unknown queryId")
    return FeedbackResponse(success=True)


@app.post("/admin/reload", response_model=ReloadResponse, tags=["System"])
def reload_snapshots(policy: AnsweringPolicy = Depends(get_policy)):
    """Reload both snapshots after running the index builder."""
    try:
        chunks, intents = policy.reload_snapshots()
    except YogaRagError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return ReloadResponse(chunks_loaded=chunks, unsafe_intents_loaded=intents)


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=5001)
