"""
Internal

Entities of the internal table and the repository that streams them.
"""

from nautical.internal.model import Field, Internal, new_internal
from nautical.internal.repository import InternalRepository

__all__ = ["Field", "Internal", "InternalRepository", "new_internal"]
