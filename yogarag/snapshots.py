"""
yogarag/snapshots.py - Snapshot records and storage
====================================================

The offline build produces two snapshots:
- index.json: Chunk records {id, text, source, embedding}
- safety_index.json: UnsafeIntent records {text, embedding}

Both are plain JSON arrays so they can be inspected by hand. They are
written atomically (temp file + rename) and never patched in place: a
rebuild replaces the whole file.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from yogarag.errors import DimensionMismatchError, SnapshotError

logger = logging.getLogger(__name__)


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class Document:
    """A corpus document fed to the index builder."""
    title: str
    content: str


@dataclass(frozen=True)
class Chunk:
    """
    A bounded slice of a document plus its embedding.

    Attributes:
        id: Unique identifier (uuid4 hex)
        text: The window of document text
        source: Title of the parent document
        embedding: Vector from the embedding service
    """
    id: str
    text: str
    source: str
    embedding: tuple[float, ...]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "source": self.source,
            "embedding": list(self.embedding),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Chunk":
        return cls(
            id=str(data["id"]),
            text=data["text"],
            source=data["source"],
            embedding=tuple(float(x) for x in data["embedding"]),
        )


@dataclass(frozen=True)
class UnsafeIntent:
    """A curated phrase describing a topic we must refuse, with its embedding."""
    text: str
    embedding: tuple[float, ...]

    def to_dict(self) -> dict:
        return {"text": self.text, "embedding": list(self.embedding)}

    @classmethod
    def from_dict(cls, data: dict) -> "UnsafeIntent":
        return cls(
            text=data["text"],
            embedding=tuple(float(x) for x in data["embedding"]),
        )


# =============================================================================
# FILE I/O
# =============================================================================

def write_json_atomic(data, path: Path) -> None:
    """
    Write JSON to ``path`` so readers see either the old file or the new one.

    The data is written to a temp file in the same directory and then
    renamed over the target.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def read_snapshot(path: Path) -> Optional[list[dict]]:
    """
    Read a snapshot file.

    Returns:
        The list of records, or None if the file does not exist

    Raises:
        SnapshotError: If the file is not a JSON array of objects
    """
    path = Path(path)
    if not path.exists():
        return None

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise SnapshotError(f"Snapshot {path} is not valid JSON: {e}") from e

    if not isinstance(data, list) or not all(isinstance(r, dict) for r in data):
        raise SnapshotError(f"Snapshot {path} must be a JSON array of objects")

    return data


def _check_dimensions(records, path: Path) -> None:
    dims = {len(r.embedding) for r in records}
    if len(dims) > 1:
        raise SnapshotError(f"Snapshot {path} mixes embedding dimensions: {sorted(dims)}")


def load_chunks(path: Path) -> Optional[tuple[Chunk, ...]]:
    """Load the chunk snapshot, or None if it has not been built."""
    data = read_snapshot(path)
    if data is None:
        return None

    try:
        chunks = tuple(Chunk.from_dict(record) for record in data)
    except (KeyError, TypeError, ValueError) as e:
        raise SnapshotError(f"Malformed chunk record in {path}: {e!r}") from e

    _check_dimensions(chunks, path)
    return chunks


def load_unsafe_intents(path: Path) -> Optional[tuple[UnsafeIntent, ...]]:
    """Load the unsafe-intent snapshot, or None if it has not been built."""
    data = read_snapshot(path)
    if data is None:
        return None

    try:
        intents = tuple(UnsafeIntent.from_dict(record) for record in data)
    except (KeyError, TypeError, ValueError) as e:
        raise SnapshotError(f"Malformed unsafe intent record in {path}: {e!r}") from e

    _check_dimensions(intents, path)
    return intents


def save_chunks(chunks: list[Chunk], path: Path) -> None:
    write_json_atomic([c.to_dict() for c in chunks], path)
    logger.info("Saved %d chunks to %s", len(chunks), path)


def save_unsafe_intents(intents: list[UnsafeIntent], path: Path) -> None:
    write_json_atomic([i.to_dict() for i in intents], path)
    logger.info("Saved %d unsafe intents to %s", len(intents), path)


def ensure_same_dimension(vectors) -> Optional[int]:
    """
    Return the shared length of ``vectors`` (None if empty).

    Raises:
        DimensionMismatchError: On the first vector that differs
    """
    dimension = None
    for vector in vectors:
        if dimension is None:
            dimension = len(vector)
        elif len(vector) != dimension:
            raise DimensionMismatchError(dimension, len(vector))
    return dimension
