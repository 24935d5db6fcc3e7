"""
Shared declarative base for all engine models.

Every model imports ``Base`` from here so that the metadata used by
``Database.create_tables`` and the Alembic environment sees all tables.
"""

from sqlalchemy import MetaData
from sqlalchemy.orm import declarative_base

# Stable constraint names keep Alembic autogenerate diffs clean
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

Base = declarative_base(metadata=MetaData(naming_convention=NAMING_CONVENTION))
