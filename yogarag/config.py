"""
yogarag/config.py - Configuration settings for the Yoga RAG Wellness Assistant
===============================================================================

This file centralizes all configuration values. Sensitive values like API
keys come from environment variables (or a .env file in the project root).
Thresholds can be overridden from the environment so they can be tuned per
deployment without touching code.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()

# =============================================================================
# PATH CONFIGURATION
# =============================================================================

# Project root (one level above this package)
BASE_DIR = Path(__file__).resolve().parent.parent

# Data directories
DATA_DIR = Path(os.getenv("YOGARAG_DATA_DIR", str(BASE_DIR / "data")))
ARTICLES_PATH = DATA_DIR / "articles.json"               # Corpus documents
UNSAFE_INTENTS_PATH = DATA_DIR / "unsafe_intents.json"   # Curated unsafe phrases

# Snapshots written by the offline build (yogarag-build)
SNAPSHOT_DIR = DATA_DIR / "snapshots"
INDEX_SNAPSHOT_PATH = SNAPSHOT_DIR / "index.json"
SAFETY_SNAPSHOT_PATH = SNAPSHOT_DIR / "safety_index.json"
BUILD_META_PATH = SNAPSHOT_DIR / "build_meta.json"

# Interaction records (query, answer, feedback)
INTERACTION_LOG_PATH = DATA_DIR / "interactions.jsonl"

# =============================================================================
# EMBEDDING MODEL CONFIGURATION
# =============================================================================

# sentence-transformers runs locally - no API key needed
EMBEDDING_MODEL_NAME = os.getenv("EMBEDDING_MODEL_NAME", "all-MiniLM-L6-v2")
EMBEDDING_DIMENSION = 384  # Dimension for all-MiniLM-L6-v2

# A query embedding that takes longer than this fails with a timeout error
EMBEDDING_TIMEOUT_SECONDS = float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "30"))

# Threads that run query embeddings for one policy. A timed-out embedding
# keeps its thread until the model returns; with every thread stuck, new
# queries wait in the queue and time out as well.
EMBEDDING_WORKERS = int(os.getenv("EMBEDDING_WORKERS", "8"))

# =============================================================================
# CHUNKING CONFIGURATION
# =============================================================================

# Documents are cut into contiguous, non-overlapping character windows
CHUNK_SIZE = 500          # Characters per window
MIN_CHUNK_LENGTH = 50     # Shorter trailing windows are dropped

# =============================================================================
# RETRIEVAL CONFIGURATION
# =============================================================================

# Number of similar chunks to retrieve for each query
TOP_K_RESULTS = 3

# If the best chunk scores below this cosine similarity we answer
# "I don't know" instead of calling the LLM (anti-hallucination boundary)
RETRIEVAL_SCORE_THRESHOLD = float(os.getenv("RETRIEVAL_SCORE_THRESHOLD", "0.22"))

# =============================================================================
# SAFETY CONFIGURATION
# =============================================================================

# Semantic layer: a query must score strictly above this against an unsafe
# intent to be flagged. Kept high so generic yoga questions are not refused.
SEMANTIC_SAFETY_THRESHOLD = float(os.getenv("SEMANTIC_SAFETY_THRESHOLD", "0.75"))

# Keyword layer: category -> case-insensitive regex. Evaluated in this order,
# and the order is reflected in the reasons returned to the caller.
SAFETY_RULES = {
    "pregnancy": r"pregnan|maternity|trimester|birth",
    "surgery": r"surgery|operation|post-op|incision",
    "blood_pressure": r"blood pressure|hypertension|high bp",
    "glaucoma": r"glaucoma|eye pressure",
    "hernia": r"hernia|rupture",
    "medical_advice": r"cure|diagnosis|prescription|treat",
}

# =============================================================================
# LLM CONFIGURATION
# =============================================================================

# OpenAI API key - without it the assistant answers "LLM not configured."
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")

# Model to use for response generation
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")

# Lower is better for factual Q&A
LLM_TEMPERATURE = 0.3

# Maximum tokens in the response
LLM_MAX_TOKENS = 500

# Seconds before a completion request fails with a timeout error
COMPLETION_TIMEOUT_SECONDS = float(os.getenv("COMPLETION_TIMEOUT_SECONDS", "60"))

# =============================================================================
# API CONFIGURATION
# =============================================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
    ).split(",")
    if origin.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
