"""Relay backend application."""

from pathlib import Path
import sys

# The realtime core lives under backend/src when running from a checkout.
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if SRC_PATH.exists() and str(SRC_PATH) not in sys.path:  # pragma: no branch
    sys.path.append(str(SRC_PATH))

from app.main import app

__all__ = ["app"]
