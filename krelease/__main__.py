"""Entry point for `python -m krelease`.

Usage:
    python -m krelease
    uv run python -m krelease
"""

from __future__ import annotations

import asyncio

from krelease.app import main

asyncio.run(main())
