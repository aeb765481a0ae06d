"""
yogarag - Yoga RAG Wellness Assistant
=====================================

This package contains the main components:
- indexer.py: Offline chunk and safety snapshot builder
- vectorstore.py: Cosine similarity and top-K retrieval
- safety.py: Keyword + semantic safety classifier
- service.py: Answering policy that orchestrates everything
- interactions.py: Interaction records and feedback
"""

__version__ = "1.0.0"
