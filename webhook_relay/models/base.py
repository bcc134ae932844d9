"""
Base model classes for Webhook Relay.

Provides SQLAlchemy declarative base and timestamp helpers.
"""
import time

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def epoch_seconds() -> int:
    """Current time as whole seconds since the epoch."""
    return int(time.time())
