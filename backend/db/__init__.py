"""Database package for the treasury ORM models and migrations."""

from __future__ import annotations

import logging

from backend.db.base import TreasuryBase, metadata
from backend.db import models

logger = logging.getLogger(__name__)

__all__ = ["TreasuryBase", "metadata", "models"]
