"""Main FamilyGraph facade combining all operations."""

from typing import Optional

from kinship.graph.family.lineage import LineageBuilder
from kinship.graph.family.relationships import RelationshipEngine
from kinship.graph.models import Member, Union
from kinship.graph.store import KinshipStore
from kinship.graph.unions import RepairReport, UnionLifecycleManager


class FamilyGraph:
    """
    Main interface for kinship graph operations.

    Combines member storage, union lifecycle and relationship derivation.

    Usage:
        graph = FamilyGraph()
        ramesh = graph.add_member(Member(first_name="Ramesh", gender="Male"))
        padma = graph.add_member(Member(first_name="Padma", gender="Female"))
        union = graph.create_union(ramesh, padma, created_by="admin")
        network = graph.family_network(ramesh)
    """

    def __init__(self, db_path: str = None, store: KinshipStore = None):
        self.store = store or KinshipStore(db_path)

        # Compose operations
        self.lineage = LineageBuilder(self.store)
        self.unions = UnionLifecycleManager(self.store, self.lineage)
        self.relationships = RelationshipEngine(self.store)

    # ─────────────────────────────────────────
    # Member operations (delegated)
    # ─────────────────────────────────────────

    def add_member(self, member: Member) -> str:
        return self.store.add_member(member)

    def get_member(self, member_id: str) -> Optional[Member]:
        return self.store.get_member(member_id)

    # ─────────────────────────────────────────
    # Union operations (delegated)
    # ─────────────────────────────────────────

    def create_union(self, husband_id: str, wife_id: str, **kwargs) -> Union:
        return self.unions.create_union(husband_id, wife_id, **kwargs)

    def get_union(self, union_id: str) -> Union:
        return self.unions.get_union(union_id)

    def add_child(self, union_id: str, child_id: str) -> Union:
        return self.unions.add_child(union_id, child_id)

    def verify(self, union_id: str, action: str, actor_id: str, rejection_reason: str = None) -> Union:
        return self.unions.verify(union_id, action, actor_id, rejection_reason)

    def soft_delete(self, union_id: str) -> Union:
        return self.unions.soft_delete(union_id)

    def list_pending(self) -> list[Union]:
        return self.unions.list_pending()

    def list_by_member(self, member_id: str) -> list[Union]:
        return self.unions.list_by_member(member_id)

    def repair_back_pointers(self) -> RepairReport:
        return self.unions.repair_back_pointers()

    # ─────────────────────────────────────────
    # Relationship views (delegated)
    # ─────────────────────────────────────────

    def eligible_candidates(self, relation_type: str, gender: str = None, exclude_id: str = None):
        return self.relationships.eligible_candidates(relation_type, gender, exclude_id)

    def immediate_relations(self, member_id: str) -> dict:
        return self.relationships.immediate_relations(member_id)

    def family_network(self, member_id: str) -> dict:
        return self.relationships.family_network(member_id)

    def refresh_lineage(self) -> int:
        return self.lineage.refresh_all()
