"""Graph package - kinship graph over a SQLite document store."""

from kinship.graph.models import Marriage, Member, Union
from kinship.graph.store import KinshipStore

__all__ = [
    "Marriage",
    "Member",
    "Union",
    "KinshipStore",
]
