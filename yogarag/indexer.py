"""
yogarag/indexer.py - Offline Index and Safety Corpus Builder
=============================================================

Builds the two snapshots the assistant serves from:

1. Index snapshot: every article is cut into contiguous, non-overlapping
   windows of CHUNK_SIZE characters, each window is embedded, and the
   resulting chunks are saved to snapshots/index.json.
2. Safety snapshot: each curated unsafe-intent phrase is embedded and saved
   to snapshots/safety_index.json.

Every run is a full rebuild. Nothing is written until all embeddings have
been computed, so a failed run leaves the previous snapshots in place.

Usage:
    yogarag-build
    yogarag-build --articles data/articles.json --workers 4
    yogarag-build --smoke-test "What are the benefits of downward dog?"
"""

import argparse
import hashlib
import json
import logging
import sys
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from yogarag.config import (
    ARTICLES_PATH,
    CHUNK_SIZE,
    EMBEDDING_MODEL_NAME,
    MIN_CHUNK_LENGTH,
    SNAPSHOT_DIR,
    UNSAFE_INTENTS_PATH,
)
from yogarag.errors import (
    ConfigurationError,
    DimensionMismatchError,
    DocumentError,
    EmbeddingError,
    SnapshotError,
    YogaRagError,
)
from yogarag.logger import configure_logging
from yogarag.snapshots import (
    Chunk,
    Document,
    UnsafeIntent,
    ensure_same_dimension,
    save_chunks,
    save_unsafe_intents,
    write_json_atomic,
)

logger = logging.getLogger(__name__)


# =============================================================================
# TEXT CHUNKING
# =============================================================================

def split_into_windows(content: str, chunk_size: int = CHUNK_SIZE,
                       min_length: int = MIN_CHUNK_LENGTH) -> list[str]:
    """
    Split text into contiguous, non-overlapping character windows.

    Windows start at offset 0 and step by chunk_size. Every window is
    exactly chunk_size long except possibly the last; a last window shorter
    than min_length is dropped.

    Args:
        content: The full document text
        chunk_size: Characters per window
        min_length: Minimum length of a kept window

    Returns:
        List of window strings in document order
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    windows = []
    for start in range(0, len(content), chunk_size):
        window = content[start:start + chunk_size]
        if len(window) < min_length:
            continue  # Skip very small chunks
        windows.append(window)
    return windows


# =============================================================================
# INPUT LOADING
# =============================================================================

def _parse_document(record, position: int) -> Document:
    if not isinstance(record, dict):
        raise DocumentError(f"Document #{position} is not an object")

    title = record.get("title")
    content = record.get("content")
    if not isinstance(title, str) or not title.strip():
        raise DocumentError(f"Document #{position} has no title")
    if not isinstance(content, str):
        raise DocumentError(f"Document #{position} ({title!r}) has missing or malformed content")

    return Document(title=title, content=content)


def load_documents(path: Path) -> list[Document]:
    """
    Load corpus documents ({title, content}) from a JSON array or JSONL file.

    Raises:
        ConfigurationError: If the file does not exist
        DocumentError: If the file or any document is malformed
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Articles file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix == ".jsonl":
                records = [json.loads(line) for line in f if line.strip()]
            else:
                records = json.load(f)
    except json.JSONDecodeError as e:
        raise DocumentError(f"Articles file {path} is not valid JSON: {e}") from e

    if not isinstance(records, list):
        raise DocumentError(f"Articles file {path} must contain a list of documents")

    return [_parse_document(record, i) for i, record in enumerate(records)]


def load_unsafe_phrases(path: Path) -> list[str]:
    """
    Load the curated unsafe-intent phrase list (a JSON array of strings).

    A missing file yields an empty list: the safety layer then relies on
    keyword rules alone.

    Raises:
        DocumentError: If the file exists but is not a list of strings
    """
    path = Path(path)
    if not path.exists():
        logger.warning("No unsafe intents file found at %s", path)
        return []

    try:
        with open(path, "r", encoding="utf-8") as f:
            phrases = json.load(f)
    except json.JSONDecodeError as e:
        raise DocumentError(f"Unsafe intents file {path} is not valid JSON: {e}") from e

    if not isinstance(phrases, list) or not all(isinstance(p, str) for p in phrases):
        raise DocumentError(f"Unsafe intents file {path} must be a JSON array of strings")

    return phrases


def corpus_hash(documents: list[Document]) -> str:
    """sha256 over titles and contents, for spotting unchanged rebuilds."""
    hasher = hashlib.sha256()
    for doc in documents:
        hasher.update(doc.title.encode("utf-8"))
        hasher.update(b"\x00")
        hasher.update(doc.content.encode("utf-8"))
        hasher.update(b"\x00")
    return hasher.hexdigest()


# =============================================================================
# EMBEDDING
# =============================================================================

def _embed_texts(embedder, texts: list[str]) -> list[tuple[float, ...]]:
    try:
        vectors = embedder.embed_many(texts)
    except YogaRagError:
        raise
    except Exception as e:
        raise EmbeddingError(f"Embedding failed: {e}") from e
    return [tuple(float(x) for x in vector) for vector in vectors]


def _chunk_document(document: Document, embedder, chunk_size: int) -> list[Chunk]:
    windows = split_into_windows(document.content, chunk_size)
    if not windows:
        return []

    embeddings = _embed_texts(embedder, windows)
    return [
        Chunk(id=uuid.uuid4().hex, text=window, source=document.title, embedding=embedding)
        for window, embedding in zip(windows, embeddings)
    ]


def build_chunks(documents: list[Document], embedder, chunk_size: int = CHUNK_SIZE,
                 max_workers: int = 1) -> list[Chunk]:
    """
    Chunk and embed every document.

    Documents are independent, so with max_workers > 1 they are embedded
    concurrently. The output keeps document order either way.

    Raises:
        EmbeddingError: If the embedding service fails
        DimensionMismatchError: If chunks come back with different dimensions
    """
    if max_workers > 1 and len(documents) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            per_document = list(executor.map(
                lambda doc: _chunk_document(doc, embedder, chunk_size), documents
            ))
    else:
        per_document = [_chunk_document(doc, embedder, chunk_size) for doc in documents]

    chunks = [chunk for doc_chunks in per_document for chunk in doc_chunks]
    ensure_same_dimension(chunk.embedding for chunk in chunks)
    return chunks


def build_unsafe_intents(phrases: list[str], embedder) -> list[UnsafeIntent]:
    """Embed each unsafe-intent phrase, keeping the phrase order."""
    if not phrases:
        return []

    embeddings = _embed_texts(embedder, phrases)
    intents = [UnsafeIntent(text=p, embedding=e) for p, e in zip(phrases, embeddings)]
    ensure_same_dimension(intent.embedding for intent in intents)
    return intents


# =============================================================================
# SNAPSHOT BUILDS
# =============================================================================

def build_index_snapshot(documents: list[Document], snapshot_path: Path, embedder,
                         chunk_size: int = CHUNK_SIZE, max_workers: int = 1) -> list[Chunk]:
    """
    Rebuild the chunk snapshot on its own.

    The snapshot file is only written once every chunk has been embedded.
    """
    chunks = build_chunks(documents, embedder, chunk_size=chunk_size, max_workers=max_workers)
    save_chunks(chunks, snapshot_path)
    return chunks


def build_safety_snapshot(phrases_path: Path, snapshot_path: Path, embedder) -> list[UnsafeIntent]:
    """
    Rebuild the unsafe-intent snapshot on its own, overwriting any previous one.

    An absent phrase list produces an empty snapshot.
    """
    intents = build_unsafe_intents(load_unsafe_phrases(phrases_path), embedder)
    save_unsafe_intents(intents, snapshot_path)
    return intents


def build_meta(documents: list[Document], chunks: list[Chunk],
               intents: Optional[list[UnsafeIntent]], chunk_size: int,
               model_name: str = EMBEDDING_MODEL_NAME) -> dict:
    """Describe a build for build_meta.json."""
    dimension = len(chunks[0].embedding) if chunks else None
    return {
        "build_timestamp": datetime.now(timezone.utc).isoformat(),
        "num_documents": len(documents),
        "num_chunks": len(chunks),
        "num_unsafe_intents": None if intents is None else len(intents),
        "embedding_model": model_name,
        "embedding_dimension": dimension,
        "chunk_size": chunk_size,
        "min_chunk_length": MIN_CHUNK_LENGTH,
        "corpus_sha256": corpus_hash(documents),
    }


def write_snapshots(output_dir: Path, chunks: list[Chunk],
                    intents: Optional[list[UnsafeIntent]], meta: dict) -> None:
    """
    Write index.json, safety_index.json and build_meta.json.

    Callers pass fully embedded chunks and intents, so an aborted build never
    reaches this point and the previous files stay in place. With intents
    None the existing safety snapshot is left untouched.

    Raises:
        DimensionMismatchError: If chunks and intents disagree on dimension
    """
    output_dir = Path(output_dir)
    if intents:
        ensure_same_dimension(
            [c.embedding for c in chunks[:1]] + [i.embedding for i in intents]
        )

    save_chunks(chunks, output_dir / "index.json")
    if intents is not None:
        save_unsafe_intents(intents, output_dir / "safety_index.json")
    write_json_atomic(meta, output_dir / "build_meta.json")


# =============================================================================
# MAIN PIPELINE
# =============================================================================

def _smoke_test(query: str, index_path: Path, embedder) -> None:
    from yogarag.vectorstore import VectorRetriever

    retriever = VectorRetriever(index_path)
    retriever.load()
    results = retriever.search(embedder.embed(query))

    print(f"\nSearch results for {query!r}:")
    if not results:
        print("  (no results)")
    for i, result in enumerate(results, 1):
        preview = result.text[:80].replace("\n", " ")
        print(f"  {i}. [{result.score:.3f}] {result.source}: {preview}...")


def main(argv: Optional[list[str]] = None, embedder=None) -> int:
    """Entry point for the yogarag-build console script."""
    parser = argparse.ArgumentParser(
        description="Build the Yoga RAG index and safety snapshots",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--articles", type=Path, default=ARTICLES_PATH,
                        help=f"Articles JSON/JSONL file (default: {ARTICLES_PATH})")
    parser.add_argument("--intents", type=Path, default=UNSAFE_INTENTS_PATH,
                        help=f"Unsafe intent phrases (default: {UNSAFE_INTENTS_PATH})")
    parser.add_argument("--output-dir", type=Path, default=SNAPSHOT_DIR,
                        help=f"Where to write snapshots (default: {SNAPSHOT_DIR})")
    parser.add_argument("--chunk-size", type=int, default=CHUNK_SIZE,
                        help=f"Characters per chunk (default: {CHUNK_SIZE})")
    parser.add_argument("--workers", type=int, default=1,
                        help="Documents to embed in parallel (default: 1)")
    parser.add_argument("--skip-safety", action="store_true",
                        help="Only rebuild the chunk index")
    parser.add_argument("--smoke-test", type=str, metavar="QUERY",
                        help="Run a search against the freshly built index")
    args = parser.parse_args(argv)
    configure_logging()

    if args.chunk_size < MIN_CHUNK_LENGTH:
        parser.error(f"--chunk-size must be at least {MIN_CHUNK_LENGTH}")

    if embedder is None:
        from yogarag.embeddings import get_embedder
        embedder = get_embedder()

    index_path = args.output_dir / "index.json"
    safety_path = args.output_dir / "safety_index.json"

    print("=" * 60)
    print("Yoga RAG - Building snapshots")
    print("=" * 60)

    try:
        print(f"\n[1/4] Loading articles from {args.articles}")
        documents = load_documents(args.articles)
        print(f"  Loaded {len(documents)} articles")

        print(f"\n[2/4] Chunking and embedding (chunk size {args.chunk_size})")
        chunks = build_chunks(documents, embedder, chunk_size=args.chunk_size,
                              max_workers=args.workers)
        print(f"  Embedded {len(chunks)} chunks")

        intents = None
        if args.skip_safety:
            print("\n[3/4] Skipping safety index")
        else:
            print(f"\n[3/4] Embedding unsafe intents from {args.intents}")
            intents = build_unsafe_intents(load_unsafe_phrases(args.intents), embedder)
            print(f"  Embedded {len(intents)} safety intents")

        print(f"\n[4/4] Writing snapshots to {args.output_dir}")
        meta = build_meta(documents, chunks, intents, args.chunk_size)
        write_snapshots(args.output_dir, chunks, intents, meta)
        print(f"  Saved {len(chunks)} chunks to {index_path}")
        if intents is not None:
            print(f"  Saved {len(intents)} safety intents to {safety_path}")
        print(f"  Saved build metadata: {args.output_dir / 'build_meta.json'}")

        if args.smoke_test:
            _smoke_test(args.smoke_test, index_path, embedder)

    except (ConfigurationError, DocumentError, EmbeddingError,
            DimensionMismatchError, SnapshotError) as e:
        print(f"\nError: {e}")
        print("Build aborted; existing snapshots were left unchanged.")
        return 1

    print("\n" + "=" * 60)
    print("Build complete!")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
