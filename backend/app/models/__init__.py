"""
Models Package

This package contains all SQLAlchemy models for the application.
Importing them here registers them with SQLAlchemy's metadata so that
``Base.metadata.create_all()`` can find them.
"""

from .user import User

__all__ = [
    "User",
]
