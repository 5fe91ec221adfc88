"""Shared pytest configuration for zapper tests."""

from __future__ import annotations

import sys
from pathlib import Path

# Add the zapper root to sys.path so tests can import modules directly.
_ZAPPER_ROOT = str(Path(__file__).resolve().parent.parent)
if _ZAPPER_ROOT not in sys.path:
    sys.path.insert(0, _ZAPPER_ROOT)
