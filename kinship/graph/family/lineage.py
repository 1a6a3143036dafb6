"""
Lineage Builder - derives the cached family_lineage_links tree.

The cached tree on each member is a materialized view of the union edges.
This module is the one place that computes it: every edge mutation asks it
to recompute the members whose view may have changed.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from loguru import logger

from kinship.graph.models import (
    ExtendedNetwork,
    FamilyLineageLinks,
    Gender,
    ImmediateRelations,
    InLawBranch,
    MaternalBranch,
    PaternalBranch,
    Union,
    UnionStatus,
)
from kinship.graph.store import KinshipStore

# Widest relation in the tree (kaki: parent -> grandparents' union -> uncle -> his union)
REFRESH_DEPTH = 3


@dataclass
class KinshipIndex:
    """In-memory snapshot of live union edges, keyed for traversal."""
    genders: dict[str, Optional[str]] = field(default_factory=dict)
    parental: dict[str, Union] = field(default_factory=dict)
    current: dict[str, Union] = field(default_factory=dict)
    as_parent: dict[str, list[Union]] = field(default_factory=lambda: defaultdict(list))
    touching: dict[str, list[Union]] = field(default_factory=lambda: defaultdict(list))

    @classmethod
    def build(cls, unions: Iterable[Union], genders: dict[str, Optional[str]] = None) -> "KinshipIndex":
        """
        Index unions in creation order so later unions win.

        - current: latest Active union per spouse
        - parental: latest live union per child
        """
        index = cls(genders=genders or {})
        for union in unions:
            if not union.is_live:
                continue
            for spouse_id in (union.husband_id, union.wife_id):
                index.as_parent[spouse_id].append(union)
                index.touching[spouse_id].append(union)
                if union.status == UnionStatus.ACTIVE:
                    index.current[spouse_id] = union
            for child_id in union.children_ids:
                index.parental[child_id] = union
                index.touching[child_id].append(union)
        return index

    def parents_of(self, member_id: str) -> tuple[Optional[str], Optional[str]]:
        union = self.parental.get(member_id)
        return (union.husband_id, union.wife_id) if union else (None, None)

    def spouse_of(self, member_id: str) -> Optional[str]:
        union = self.current.get(member_id)
        return union.partner_of(member_id) if union else None

    def siblings_of(self, member_id: str) -> list[str]:
        union = self.parental.get(member_id)
        if not union:
            return []
        return [c for c in union.children_ids if c != member_id]

    def children_of(self, member_id: str) -> list[str]:
        children = []
        for union in self.as_parent.get(member_id, []):
            children.extend(c for c in union.children_ids if c not in children)
        return children

    def spouses_of(self, member_ids: Iterable[str]) -> list[str]:
        spouses = []
        for member_id in member_ids:
            spouse = self.spouse_of(member_id)
            if spouse and spouse not in spouses:
                spouses.append(spouse)
        return spouses

    def split_by_gender(self, member_ids: Iterable[str]) -> tuple[list[str], list[str]]:
        """(males, females); members of unknown gender fall in neither."""
        males, females = [], []
        for member_id in member_ids:
            gender = self.genders.get(member_id)
            if gender == Gender.MALE.value:
                males.append(member_id)
            elif gender == Gender.FEMALE.value:
                females.append(member_id)
        return males, females

    def neighbours(self, member_id: str) -> set[str]:
        """Members sharing any live union with member_id."""
        found = set()
        for union in self.touching.get(member_id, []):
            found.update((union.husband_id, union.wife_id, *union.children_ids))
        found.discard(member_id)
        return found


class LineageBuilder:
    """Computes and persists family_lineage_links from union edges."""

    def __init__(self, store: KinshipStore):
        self.store = store

    def _index(self) -> KinshipIndex:
        genders = {
            m.id: (m.gender.value if m.gender else None)
            for m in self.store.all_members()
        }
        return KinshipIndex.build(self.store.all_unions(), genders)

    def derive(self, member_id: str, index: KinshipIndex = None) -> FamilyLineageLinks:
        """Compute the full relation tree of a member by live traversal."""
        index = index or self._index()

        father_id, mother_id = index.parents_of(member_id)
        spouse_id = index.spouse_of(member_id)
        siblings = index.siblings_of(member_id)
        _, sisters = index.split_by_gender(siblings)

        paternal = PaternalBranch()
        if father_id:
            paternal.dada_id, paternal.dadi_id = index.parents_of(father_id)
            brothers, aunts = index.split_by_gender(index.siblings_of(father_id))
            paternal.kaka_ids = brothers
            paternal.kaki_ids = index.spouses_of(brothers)
            paternal.bua_ids = aunts
            paternal.fufa_ids = index.spouses_of(aunts)

        maternal = MaternalBranch()
        if mother_id:
            maternal.nana_id, maternal.nani_id = index.parents_of(mother_id)
            brothers, aunts = index.split_by_gender(index.siblings_of(mother_id))
            maternal.mama_ids = brothers
            maternal.mami_ids = index.spouses_of(brothers)
            maternal.mausi_ids = aunts
            maternal.mausa_ids = index.spouses_of(aunts)

        in_laws = InLawBranch(jija_ids=index.spouses_of(sisters))
        if spouse_id:
            in_laws.father_in_law_id, in_laws.mother_in_law_id = index.parents_of(spouse_id)
            in_laws.saala_ids, in_laws.saali_ids = index.split_by_gender(index.siblings_of(spouse_id))

        return FamilyLineageLinks(
            immediate_relations=ImmediateRelations(
                father_id=father_id,
                mother_id=mother_id,
                spouse_id=spouse_id,
                siblings_ids=siblings,
                children_ids=index.children_of(member_id),
            ),
            extended_network=ExtendedNetwork(
                paternal=paternal,
                maternal=maternal,
                in_laws=in_laws,
            ),
            refreshed_at=datetime.now(),
        )

    def refresh(self, member_ids: Iterable[str], index: KinshipIndex = None) -> int:
        """Recompute and store the cached tree for the given members."""
        index = index or self._index()
        refreshed = 0
        for member_id in member_ids:
            if self.store.save_lineage_links(member_id, self.derive(member_id, index)):
                refreshed += 1
        return refreshed

    def refresh_around(self, member_ids: Iterable[str], depth: int = REFRESH_DEPTH) -> int:
        """Refresh every member within `depth` union hops of the given members."""
        index = self._index()
        seen = set(m for m in member_ids if m)
        frontier = set(seen)

        for _ in range(depth):
            next_frontier = set()
            for member_id in frontier:
                next_frontier.update(index.neighbours(member_id) - seen)
            if not next_frontier:
                break
            seen.update(next_frontier)
            frontier = next_frontier

        refreshed = self.refresh(sorted(seen), index)
        logger.debug(f"Refreshed lineage cache for {refreshed} members")
        return refreshed

    def refresh_all(self) -> int:
        index = self._index()
        return self.refresh(list(index.genders), index)
