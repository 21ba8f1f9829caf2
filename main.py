"""Engine entry point.

Run with ``uvicorn main:app``; configuration comes from ``GRO_*`` environment
variables (see ``gro/settings.py``).
"""
from gro.api import app

__all__ = ["app"]
