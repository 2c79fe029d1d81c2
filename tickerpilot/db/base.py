"""
Database base configuration
"""
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

# Create declarative base for SQLAlchemy models
Base = declarative_base()


# Import all models here to ensure they are registered with SQLAlchemy
def import_models():
    """Import all models to register them with SQLAlchemy"""
    from tickerpilot.models import user  # noqa: F401
    from tickerpilot.models import package  # noqa: F401
    from tickerpilot.models import user_subscription  # noqa: F401
    from tickerpilot.models import webhook_event  # noqa: F401


# JSONB on Postgres, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")
