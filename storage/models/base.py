"""
Base ORM Model.

============================================================
PURPOSE
============================================================
Provides the declarative base used by all ORM models of the
market data store.

============================================================
COMPONENTS
============================================================
- Base: SQLAlchemy declarative base for all models
- SurrogateId: store-assigned integer identity type

============================================================
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer
from sqlalchemy.orm import DeclarativeBase


# BIGINT identity on PostgreSQL; SQLite only autoincrements INTEGER keys.
SurrogateId = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    """
    Declarative base for all ORM models.

    All timestamps are timezone-aware.
    """

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }
