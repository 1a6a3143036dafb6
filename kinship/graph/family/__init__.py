"""Family graph package."""
from kinship.graph.family.lineage import KinshipIndex, LineageBuilder
from kinship.graph.family.relationships import MemberSummary, RelationshipEngine

__all__ = ["KinshipIndex", "LineageBuilder", "MemberSummary", "RelationshipEngine"]
