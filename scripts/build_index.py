#!/usr/bin/env python3
"""
scripts/build_index.py - Build the chunk and safety snapshots
==============================================================

Reads data/articles.json and data/unsafe_intents.json, embeds them, and
writes the snapshots to data/snapshots/.

Usage:
    python scripts/build_index.py
    python scripts/build_index.py --workers 4 --smoke-test "Benefits of yoga?"

Run this script whenever you:
- Add or edit articles
- Change the unsafe intent phrases
- Change CHUNK_SIZE in yogarag/config.py

The script overwrites existing snapshots. A running server picks them up
after POST /admin/reload.
"""

import sys

from yogarag.indexer import main


if __name__ == "__main__":
    sys.exit(main())
