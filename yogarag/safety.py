"""
yogarag/safety.py - Safety Classifier
=====================================

Decides whether a question may be answered from the knowledge base or
must get a supportive refusal instead. Two layers:

Layer 1 - Keyword rules:
    A fixed, ordered set of categories (pregnancy, surgery, ...) each with a
    case-insensitive pattern. Every category is checked; every match is
    reported. Cheap, and the full list of matches is useful for audit.

Layer 2 - Semantic similarity:
    The query embedding is compared against embeddings of curated "unsafe
    intent" phrases (built offline by yogarag.indexer). The first intent
    scoring above the threshold is reported and the scan stops there: one
    strong match is enough evidence.

Either layer matching makes the query unsafe.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from yogarag.config import (
    SAFETY_RULES,
    SAFETY_SNAPSHOT_PATH,
    SEMANTIC_SAFETY_THRESHOLD,
)
from yogarag.snapshots import UnsafeIntent, load_unsafe_intents
from yogarag.vectorstore import cosine_similarity

logger = logging.getLogger(__name__)


@dataclass
class SafetyVerdict:
    """
    Structured result from a safety check.

    Attributes:
        is_unsafe: True if any layer matched
        reasons: Keyword reasons in category order, then at most one
            semantic reason
    """
    is_unsafe: bool
    reasons: list[str] = field(default_factory=list)


# =============================================================================
# LAYER 1: KEYWORD RULES
# =============================================================================

def compile_rules(rules: dict[str, str]) -> dict[str, re.Pattern]:
    """Compile category -> pattern strings, keeping declaration order."""
    return {category: re.compile(pattern, re.IGNORECASE) for category, pattern in rules.items()}


DEFAULT_RULES = compile_rules(SAFETY_RULES)


def keyword_reasons(text: str, rules: dict[str, re.Pattern] = DEFAULT_RULES) -> list[str]:
    """
    Check ``text`` against every keyword category.

    Example:
        >>> keyword_reasons("Can yoga cure my hernia?")
        ['Matched safety rule: hernia', 'Matched safety rule: medical_advice']
        >>> keyword_reasons("What is a sun salutation?")
        []
    """
    return [
        f"Matched safety rule: {category}"
        for category, pattern in rules.items()
        if pattern.search(text)
    ]


# =============================================================================
# LAYER 2: SEMANTIC SIMILARITY
# =============================================================================

def semantic_reason(
    embedding,
    intents,
    threshold: float = SEMANTIC_SAFETY_THRESHOLD,
) -> Optional[str]:
    """
    Return a reason for the first unsafe intent scoring above ``threshold``.

    Intents are scanned in stored order and the scan stops at the first
    match. Returns None if nothing matches (or there are no intents).
    """
    for intent in intents:
        score = cosine_similarity(embedding, intent.embedding)
        logger.debug('"%s" similarity: %.3f', intent.text, score)
        if score > threshold:
            return f'Semantic match with unsafe intent: "{intent.text}" (Score: {score:.2f})'
    return None


# =============================================================================
# CLASSIFIER
# =============================================================================

class SafetyClassifier:
    """
    Combines the keyword and semantic layers.

    Usage:
        classifier = SafetyClassifier()
        classifier.load()
        verdict = classifier.check_safety("Is yoga safe during pregnancy?", embedding)
    """

    def __init__(
        self,
        snapshot_path: Path = SAFETY_SNAPSHOT_PATH,
        rules: Optional[dict[str, str]] = None,
        threshold: float = SEMANTIC_SAFETY_THRESHOLD,
    ):
        self.snapshot_path = Path(snapshot_path)
        self.rules = DEFAULT_RULES if rules is None else compile_rules(rules)
        self.threshold = threshold
        self._intents: tuple[UnsafeIntent, ...] = ()

    @property
    def intents(self) -> tuple[UnsafeIntent, ...]:
        return self._intents

    def read(self) -> tuple[UnsafeIntent, ...]:
        """
        Parse the unsafe-intent snapshot without serving it.

        Without a snapshot only the keyword layer runs.

        Raises:
            SnapshotError: If the snapshot file is malformed
        """
        intents = load_unsafe_intents(self.snapshot_path)
        if intents is None:
            logger.warning(
                "No safety index found at %s; semantic safety layer disabled.",
                self.snapshot_path,
            )
            intents = ()
        return intents

    def load(self) -> int:
        """Load (or reload) the unsafe-intent snapshot. Returns the intent count."""
        intents = self.read()
        self.use_intents(intents)
        logger.info("Loaded %d safety intents", len(intents))
        return len(intents)

    reload = load

    def use_intents(self, intents) -> None:
        """Swap in an already-built intent list."""
        self._intents = tuple(intents)

    def check_safety(self, text: str, embedding=None) -> SafetyVerdict:
        """
        Classify a query.

        Args:
            text: The raw user query
            embedding: Query embedding; if None the semantic layer is skipped

        Returns:
            SafetyVerdict with is_unsafe and the ordered reasons
        """
        reasons = keyword_reasons(text, self.rules)

        intents = self._intents
        if embedding is not None and intents:
            reason = semantic_reason(embedding, intents, self.threshold)
            if reason is not None:
                reasons.append(reason)

        return SafetyVerdict(is_unsafe=bool(reasons), reasons=reasons)
