"""Multi-pass LaTeX document builder."""
from __future__ import annotations

from .cli import main

__all__ = ["main"]
