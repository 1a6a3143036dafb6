"""Relationship Derivation Engine - read-only views over the kinship graph."""

from typing import Optional, List

from pydantic import BaseModel

from kinship.errors import NotFound
from kinship.graph.family.relation_types import ELIGIBLE_LIMIT, required_gender, rule_for
from kinship.graph.models import FamilyLineageLinks, Gender, MaritalStatus, Member
from kinship.graph.store import KinshipStore


class MemberSummary(BaseModel):
    """Fields returned wherever a relation is resolved to a person."""
    id: str
    first_name: str
    middle_name: str = ""
    last_name: str = ""
    full_name: str = ""
    gender: Optional[Gender] = None
    marital_status: Optional[MaritalStatus] = None
    city: Optional[str] = None
    village: Optional[str] = None

    @classmethod
    def of(cls, member: Member) -> "MemberSummary":
        return cls(
            id=member.id,
            first_name=member.first_name,
            middle_name=member.middle_name,
            last_name=member.last_name,
            full_name=member.full_name,
            gender=member.gender,
            marital_status=member.marital_status,
            city=member.city,
            village=member.village,
        )


def _referenced_ids(branch: BaseModel) -> list[str]:
    ids = []
    for key, value in branch:
        if key.endswith("_ids"):
            ids.extend(value)
        elif key.endswith("_id") and value:
            ids.append(value)
    return ids


def _populate(branch: BaseModel, people: dict[str, MemberSummary]) -> dict:
    """Replace every id in a cached branch with the member it points to.

    Ids that no longer resolve are dropped rather than failing the view.
    """
    populated = {}
    for key, value in branch:
        if key.endswith("_ids"):
            populated[key] = [people[i] for i in value if i in people]
        elif key.endswith("_id"):
            populated[key] = people.get(value) if value else None
    return populated


class RelationshipEngine:
    """Eligible-candidate filtering and family-network views."""

    def __init__(self, store: KinshipStore):
        self.store = store

    def eligible_candidates(
        self,
        relation_type: str,
        gender: Optional[str] = None,
        exclude_id: Optional[str] = None,
        limit: int = ELIGIBLE_LIMIT
    ) -> List[MemberSummary]:
        """
        Members who could fill a relation slot.

        Args:
            relation_type: Slot name (father, dadi, spouse, mausa, ...). Unknown
                names apply no gender filter.
            gender: Requesting member's gender, used for spouse
            exclude_id: Member to leave out, normally the requester
            limit: Cap on results, never above 200

        Returns:
            Candidates ordered by first name
        """
        rule = rule_for(relation_type)
        members = self.store.find_members(
            gender=required_gender(relation_type, gender),
            exclude_id=exclude_id,
            marital_statuses=rule.marital_statuses if rule else None,
            limit=min(limit, ELIGIBLE_LIMIT),
        )
        return [MemberSummary.of(m) for m in members]

    def _cached_tree(self, member_id: str) -> tuple[Member, FamilyLineageLinks]:
        member = self.store.get_member(member_id)
        if not member:
            raise NotFound(f"Member {member_id} not found")
        return member, member.lineage_links.family_lineage_links

    def immediate_relations(self, member_id: str) -> dict:
        """Father, mother, spouse, siblings and children of a member."""
        _, tree = self._cached_tree(member_id)
        immediate = tree.immediate_relations
        people = {
            mid: MemberSummary.of(m)
            for mid, m in self.store.get_members(_referenced_ids(immediate)).items()
        }
        resolved = _populate(immediate, people)
        return {
            "father": resolved["father_id"],
            "mother": resolved["mother_id"],
            "spouse": resolved["spouse_id"],
            "siblings": resolved["siblings_ids"],
            "children": resolved["children_ids"],
        }

    def family_network(self, member_id: str) -> dict:
        """
        Immediate relations plus the paternal, maternal and in-law branches.

        Assembled from the cached lineage tree; whatever is not populated
        comes back empty.
        """
        member, tree = self._cached_tree(member_id)
        extended = tree.extended_network
        branches = {
            "immediate_relations": tree.immediate_relations,
            "paternal": extended.paternal,
            "maternal": extended.maternal,
            "in_laws": extended.in_laws,
        }

        wanted = []
        for branch in branches.values():
            wanted.extend(_referenced_ids(branch))
        people = {mid: MemberSummary.of(m) for mid, m in self.store.get_members(wanted).items()}

        network = {
            "member": {
                "id": member.id,
                "name": f"{member.first_name} {member.last_name}".strip(),
                "full_name": member.full_name,
            },
        }
        for name, branch in branches.items():
            network[name] = _populate(branch, people)
        network["refreshed_at"] = tree.refreshed_at
        return network
