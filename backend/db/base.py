"""SQLAlchemy declarative base and shared metadata for treasury database models."""

from __future__ import annotations

import logging

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

# Constraint names are spelled out on every model; the convention only covers
# anything added without an explicit name.
NAMING_CONVENTION = {
    "ix": "idx_%(table_name)s_%(column_0_N_name)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)


class TreasuryBase(DeclarativeBase):
    """Declarative base shared by the treasury ledger tables."""

    metadata = metadata
