"""
yogarag/service.py - Answering Policy
=====================================

This module provides the main API for the assistant. The HTTP backend (or
any other caller) should ONLY call into this module.

The key method is `AnsweringPolicy.answer()` which:
1. Embeds the query (bounded by a timeout)
2. Runs the safety classifier on text + embedding
3. Unsafe -> supportive refusal, no retrieval, no sources
4. Safe -> retrieves top-K chunks from the vector store
5. Weak or no matches -> fixed "I don't know" answer, no LLM call
6. Otherwise -> context-constrained LLM answer with sources

States: START -> CLASSIFYING -> {UNSAFE_BRANCH | RETRIEVING}
        -> {FALLBACK | AUGMENTED} -> DONE
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

import numpy as np
import openai
from openai import OpenAI

from yogarag.config import (
    COMPLETION_TIMEOUT_SECONDS,
    EMBEDDING_TIMEOUT_SECONDS,
    EMBEDDING_WORKERS,
    INDEX_SNAPSHOT_PATH,
    LLM_MAX_TOKENS,
    LLM_MODEL,
    LLM_TEMPERATURE,
    OPENAI_API_KEY,
    RETRIEVAL_SCORE_THRESHOLD,
    SAFETY_SNAPSHOT_PATH,
    TOP_K_RESULTS,
)
from yogarag.errors import (
    CompletionError,
    CompletionTimeoutError,
    ConfigurationError,
    DimensionMismatchError,
    EmbeddingError,
    EmbeddingTimeoutError,
    InvalidQueryError,
    YogaRagError,
)
from yogarag.interactions import InteractionRecord
from yogarag.safety import SafetyClassifier
from yogarag.vectorstore import RetrievalResult, VectorRetriever

logger = logging.getLogger(__name__)


# =============================================================================
# RESPONSE DATA STRUCTURE
# =============================================================================

class AnswerState(str, Enum):
    START = "START"
    CLASSIFYING = "CLASSIFYING"
    UNSAFE_BRANCH = "UNSAFE_BRANCH"
    RETRIEVING = "RETRIEVING"
    FALLBACK = "FALLBACK"
    AUGMENTED = "AUGMENTED"
    DONE = "DONE"


@dataclass
class ChatResponse:
    """
    Structured response from the assistant.

    Attributes:
        answer: The text response to show the user
        sources: Source titles used, best match first (empty if unsafe)
        is_unsafe: Whether the safety classifier flagged the query
        unsafe_reasons: Why it was flagged
        branch: Which path produced the answer (UNSAFE_BRANCH, FALLBACK or AUGMENTED)
        top_score: Best retrieval score, None if retrieval did not run or found nothing
    """
    answer: str
    sources: list[str] = field(default_factory=list)
    is_unsafe: bool = False
    unsafe_reasons: list[str] = field(default_factory=list)
    branch: AnswerState = AnswerState.DONE
    top_score: Optional[float] = None

    def to_record(self, query: str) -> InteractionRecord:
        """Build the record handed to the interaction log."""
        return InteractionRecord(
            query=query,
            answer=self.answer,
            sources=list(self.sources),
            is_unsafe=self.is_unsafe,
            unsafe_reasons=list(self.unsafe_reasons),
        )


# =============================================================================
# PROMPT TEMPLATES
# =============================================================================

SAFE_SYSTEM_PROMPT = """You are a knowledgeable Yoga Wellness Assistant.
Answer the user's question using ONLY the provided context snippets.
If the answer is not in the context, say "I don't know based on the available information."
Do not make up information.
Keep the tone calm, helpful, and concise."""

UNSAFE_SYSTEM_PROMPT = """You are a careful AI assistant. The user asked a query that was flagged as potentially unsafe (medical/pregnancy/injury).
Your goal is to gently validate the user's interest but strictly REFUSE to give medical advice or specific pose prescriptions for this condition.
1. Warn the user that you cannot provide medical advice.
2. Suggest they consult a doctor or certified yoga therapist.
3. Suggest a safe, general alternative if applicable (e.g. "focus on deep breathing") but do NOT prescribe specific poses.
4. Be brief and supportive."""

USER_PROMPT_TEMPLATE = """Context:
{context}

User Question: {question}"""

FALLBACK_ANSWER = "I don't know based on the available information."

NOT_CONFIGURED_ANSWER = "LLM not configured."

# Used for flagged queries when the LLM is unavailable
SAFETY_REFUSAL_MESSAGE = (
    "I'm not able to give medical advice on this topic. Because your question "
    "touches on a health condition, please talk to your doctor or a certified "
    "yoga therapist before practicing. In the meantime, gentle deep breathing "
    "is a safe way to relax."
)


def format_context(results: list[RetrievalResult]) -> str:
    """Join retrieved chunks as "[source]: text" blocks."""
    return "\n\n".join(f"[{r.source}]: {r.text}" for r in results)


def build_safe_messages(question: str, results: list[RetrievalResult]) -> list[dict]:
    return [
        {"role": "system", "content": SAFE_SYSTEM_PROMPT},
        {"role": "user", "content": USER_PROMPT_TEMPLATE.format(
            context=format_context(results), question=question)},
    ]


def build_unsafe_messages(question: str) -> list[dict]:
    return [
        {"role": "system", "content": UNSAFE_SYSTEM_PROMPT},
        {"role": "user", "content": question},
    ]


# =============================================================================
# LLM INTEGRATION
# =============================================================================

class OpenAICompletionService:
    """Chat completions through the OpenAI API."""

    def __init__(
        self,
        api_key: str = OPENAI_API_KEY,
        model: str = LLM_MODEL,
        temperature: float = LLM_TEMPERATURE,
        max_tokens: int = LLM_MAX_TOKENS,
        timeout: float = COMPLETION_TIMEOUT_SECONDS,
    ):
        if not api_key:
            raise ConfigurationError(
                "OpenAI API key not set. "
                "Please set OPENAI_API_KEY in your .env file or environment."
            )
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        # Retries are left to the caller
        self._client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def complete(self, messages: list[dict]) -> str:
        """
        Raises:
            CompletionTimeoutError: If the request times out
            CompletionError: For any other API failure
        """
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except openai.APITimeoutError as e:
            raise CompletionTimeoutError(f"Completion timed out: {e}") from e
        except openai.OpenAIError as e:
            raise CompletionError(f"Completion failed: {e}") from e

        return response.choices[0].message.content or ""


def get_completion_service() -> Optional[OpenAICompletionService]:
    """Return the OpenAI completion service, or None if no API key is set."""
    try:
        return OpenAICompletionService()
    except ConfigurationError as e:
        logger.warning("%s LLM answers are disabled.", e)
        return None


# =============================================================================
# ANSWERING POLICY
# =============================================================================

class AnsweringPolicy:
    """
    Orchestrates classifier -> retriever -> fallback / LLM prompt.

    Usage:
        policy = AnsweringPolicy(embedder, classifier, retriever, completion)
        response = policy.answer("What are the benefits of child's pose?")
    """

    def __init__(
        self,
        embedder,
        classifier: SafetyClassifier,
        retriever: VectorRetriever,
        completion=None,
        top_k: int = TOP_K_RESULTS,
        retrieval_threshold: float = RETRIEVAL_SCORE_THRESHOLD,
        embedding_timeout: Optional[float] = EMBEDDING_TIMEOUT_SECONDS,
        embedding_workers: int = EMBEDDING_WORKERS,
    ):
        self.embedder = embedder
        self.classifier = classifier
        self.retriever = retriever
        self.completion = completion
        self.top_k = top_k
        self.retrieval_threshold = retrieval_threshold
        self.embedding_timeout = embedding_timeout
        # Query embeddings run here so they can be abandoned after a timeout
        self._executor = ThreadPoolExecutor(
            max_workers=embedding_workers, thread_name_prefix="yogarag-embed"
        )

    @property
    def llm_configured(self) -> bool:
        return self.completion is not None

    def close(self) -> None:
        """Stop the embedding threads. Queued queries are cancelled."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def reload_snapshots(self) -> tuple[int, int]:
        """
        Reload the chunk and unsafe-intent snapshots together.

        Both files are parsed and checked before either is swapped in, so a
        failed reload keeps the previous pair serving.

        Returns:
            (chunk count, intent count)

        Raises:
            SnapshotError: If either snapshot is malformed
            DimensionMismatchError: If the two snapshots disagree on dimension
        """
        index = self.retriever.read()
        intents = self.classifier.read()

        if index.dimension is not None and intents:
            intent_dimension = len(intents[0].embedding)
            if intent_dimension != index.dimension:
                raise DimensionMismatchError(index.dimension, intent_dimension)

        self.retriever.use_snapshot(index)
        self.classifier.use_intents(intents)
        logger.info("Loaded %d chunks and %d safety intents", len(index), len(intents))
        return len(index), len(intents)

    def _embed_query(self, query: str) -> np.ndarray:
        if self.embedding_timeout is None:
            return self._call_embedder(query)

        future = self._executor.submit(self._call_embedder, query)
        try:
            return future.result(timeout=self.embedding_timeout)
        except FuturesTimeoutError as e:
            future.cancel()
            raise EmbeddingTimeoutError(
                f"Embedding did not finish within {self.embedding_timeout}s"
            ) from e

    def _call_embedder(self, query: str) -> np.ndarray:
        try:
            embedding = self.embedder.embed(query)
        except YogaRagError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding failed: {e}") from e
        return np.asarray(embedding, dtype=np.float32)

    def _refuse(self, query: str) -> str:
        if self.completion is None:
            return SAFETY_REFUSAL_MESSAGE
        try:
            return self.completion.complete(build_unsafe_messages(query))
        except CompletionError as e:
            logger.warning("Refusal completion failed (%s); using canned refusal", e)
            return SAFETY_REFUSAL_MESSAGE

    def answer(self, query: str) -> ChatResponse:
        """
        Process a user question and return a structured response.

        Raises:
            InvalidQueryError: If the query is missing or blank
            EmbeddingError / EmbeddingTimeoutError: If the query can't be embedded
            CompletionError / CompletionTimeoutError: If the LLM fails on a safe query
        """
        if not isinstance(query, str) or not query.strip():
            raise InvalidQueryError("Query required")

        # ---------------------------------------------------------------------
        # START: embed the query
        # ---------------------------------------------------------------------
        embedding = self._embed_query(query)

        # ---------------------------------------------------------------------
        # CLASSIFYING
        # ---------------------------------------------------------------------
        logger.debug("State %s", AnswerState.CLASSIFYING.value)
        verdict = self.classifier.check_safety(query, embedding)

        if verdict.is_unsafe:
            # Retrieval is skipped entirely: nothing about the corpus is exposed
            logger.info("Query flagged unsafe: %s", "; ".join(verdict.reasons))
            return ChatResponse(
                answer=self._refuse(query),
                sources=[],
                is_unsafe=True,
                unsafe_reasons=verdict.reasons,
                branch=AnswerState.UNSAFE_BRANCH,
            )

        # ---------------------------------------------------------------------
        # RETRIEVING
        # ---------------------------------------------------------------------
        logger.debug("State %s", AnswerState.RETRIEVING.value)
        results = self.retriever.search(embedding, self.top_k)
        sources = [r.source for r in results]
        logger.info("Top matches: %s", [f"{r.source} ({r.score:.2f})" for r in results])

        if not results or results[0].score < self.retrieval_threshold:
            return ChatResponse(
                answer=FALLBACK_ANSWER,
                sources=sources,
                is_unsafe=False,
                unsafe_reasons=verdict.reasons,
                branch=AnswerState.FALLBACK,
                top_score=results[0].score if results else None,
            )

        # ---------------------------------------------------------------------
        # AUGMENTED
        # ---------------------------------------------------------------------
        if self.completion is None:
            answer = NOT_CONFIGURED_ANSWER
        else:
            answer = self.completion.complete(build_safe_messages(query, results))

        return ChatResponse(
            answer=answer,
            sources=sources,
            is_unsafe=False,
            unsafe_reasons=verdict.reasons,
            branch=AnswerState.AUGMENTED,
            top_score=results[0].score,
        )


# =============================================================================
# DEFAULT INSTANCE
# =============================================================================

_policy: Optional[AnsweringPolicy] = None


def build_default_policy(
    embedder=None,
    index_path: Path = INDEX_SNAPSHOT_PATH,
    safety_path: Path = SAFETY_SNAPSHOT_PATH,
    completion=None,
) -> AnsweringPolicy:
    """Wire the policy from config: local embedder, on-disk snapshots, OpenAI."""
    if embedder is None:
        from yogarag.embeddings import get_embedder
        embedder = get_embedder()
    if completion is None:
        completion = get_completion_service()

    # Load the model now so the first query's timeout doesn't cover it
    embedder.warm_up()

    policy = AnsweringPolicy(
        embedder=embedder,
        classifier=SafetyClassifier(snapshot_path=safety_path),
        retriever=VectorRetriever(snapshot_path=index_path),
        completion=completion,
    )
    policy.reload_snapshots()
    return policy


def get_policy() -> AnsweringPolicy:
    """Get or create the shared policy."""
    global _policy
    if _policy is None:
        _policy = build_default_policy()
    return _policy


def close_policy() -> None:
    """Shut down the shared policy, if one was created."""
    global _policy
    if _policy is not None:
        _policy.close()
        _policy = None


def answer_question(user_text: str) -> ChatResponse:
    """Convenience wrapper around the shared policy."""
    return get_policy().answer(user_text)
