"""Import SQLAlchemy models for Alembic's autogenerate feature."""

from wellovis.models.base import Base
import wellovis.models  # noqa: F401

__all__ = ["Base"]
