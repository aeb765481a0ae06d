"""FastAPI backend for the Yoga RAG Wellness Assistant."""
