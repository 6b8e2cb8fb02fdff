"""Entry point for `python -m apitracker`.

Usage:
    python -m apitracker
    uv run python -m apitracker
"""

from __future__ import annotations

import asyncio

from apitracker.app import main

asyncio.run(main())
