"""
Union Lifecycle Manager - creates unions and keeps member back-pointers in sync.

The union edge is the source of truth. Member.current_union_id and
Member.parental_union_id are caches written after the edge is committed;
if that second step fails the edge stays and repair_back_pointers()
brings the pointers back in line from a full scan of edges.
"""

import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, List

from loguru import logger

from kinship.config import settings
from kinship.errors import (
    AlreadyFinalized,
    DuplicateUnion,
    InvalidAction,
    InvalidGenderCombination,
    NotFound,
    ValidationError,
)
from kinship.graph.family.lineage import KinshipIndex, LineageBuilder
from kinship.graph.models import (
    Gender,
    Union,
    UnionMeta,
    UnionStatus,
    UnionType,
    VerificationStatus,
    validate_document,
)
from kinship.graph.store import KinshipStore

VERIFY_ACTIONS = {
    "approve": VerificationStatus.APPROVED,
    "reject": VerificationStatus.REJECTED,
}


@dataclass
class RepairReport:
    """Result of a back-pointer repair scan."""
    members_checked: int = 0
    current_fixed: int = 0
    parental_fixed: int = 0

    @property
    def members_updated(self) -> int:
        return self.current_fixed + self.parental_fixed


class UnionLifecycleManager:
    """Create, attach children to, verify and soft-delete unions."""

    def __init__(
        self,
        store: KinshipStore,
        lineage: LineageBuilder = None,
        id_prefix: str = None,
        id_width: int = None
    ):
        self.store = store
        self.lineage = lineage or LineageBuilder(store)
        self.id_prefix = id_prefix or settings.unions.id_prefix
        self.id_width = id_width or settings.unions.id_width

    def format_union_id(self, sequence: int) -> str:
        """UNION_0001 style identifier for a sequence number."""
        return f"{self.id_prefix}{sequence:0{self.id_width}d}"

    # =========================================================================
    # CREATION
    # =========================================================================

    def create_union(
        self,
        husband_id: str,
        wife_id: str,
        created_by: str = None,
        marriage_date: Optional[date] = None,
        marriage_place: Optional[str] = None,
        children_ids: Iterable[str] = None,
        union_type: UnionType = UnionType.MARRIAGE
    ) -> Union:
        """
        Pair two members in a new union.

        Args:
            husband_id: Member id of the male party
            wife_id: Member id of the female party
            created_by: Actor recorded on the union
            marriage_date: Optional marriage date
            marriage_place: Optional marriage place
            children_ids: Children already known for this union
            union_type: marriage (default) or birth_family

        Returns:
            The stored Union with verification Pending

        Raises:
            NotFound: husband, wife or a child does not exist
            InvalidGenderCombination: husband not Male or wife not Female
            DuplicateUnion: the pair already has a live union
            ValidationError: a child already belongs to another live union
        """
        husband = self.store.get_member(husband_id)
        wife = self.store.get_member(wife_id)
        if not husband or not wife:
            raise NotFound("Husband or Wife not found")

        if husband.gender != Gender.MALE or wife.gender != Gender.FEMALE:
            raise InvalidGenderCombination(
                f"Invalid gender combination for union: husband={husband.gender}, wife={wife.gender}"
            )

        children = list(dict.fromkeys(children_ids or []))
        missing = set(children) - set(self.store.get_members(children))
        if missing:
            raise NotFound(f"Children not found: {sorted(missing)}")

        claimed = self.store.find_parental_unions(children)
        if claimed:
            child_id, other = next(iter(claimed.items()))
            raise ValidationError(f"Member {child_id} is already a child of union {other}")

        existing = self.store.find_live_union_for_pair(husband_id, wife_id)
        if existing:
            raise DuplicateUnion(
                f"Members {husband_id} and {wife_id} already share union {existing.union_id}"
            )

        def build(sequence: int) -> Union:
            return validate_document(Union, {
                "union_id": self.format_union_id(sequence),
                "husband_id": husband_id,
                "wife_id": wife_id,
                "marriage_date": marriage_date,
                "marriage_place": marriage_place,
                "union_type": union_type,
                "children_ids": children,
                "verification": {"status": VerificationStatus.PENDING},
                "meta_data": UnionMeta(created_by=created_by),
            })

        union = self.store.insert_union(build)
        logger.info(f"Created union {union.union_id} ({husband_id} + {wife_id})")

        self._after_write(union, lambda: self._point_members(union))
        return union

    def _point_members(self, union: Union):
        self.store.update_member(union.husband_id, current_union_id=union.union_id)
        self.store.update_member(union.wife_id, current_union_id=union.union_id)
        for child_id in union.children_ids:
            self.store.update_member(child_id, parental_union_id=union.union_id)

    def _after_write(self, union: Union, sync_pointers):
        """Post-commit pointer sync and cache refresh; failures wait for repair."""
        try:
            sync_pointers()
        except sqlite3.Error as e:
            logger.error(
                f"Union {union.union_id} stored but member pointers are stale "
                f"(run repair_back_pointers): {e}"
            )
        try:
            self.lineage.refresh_around(
                [union.husband_id, union.wife_id, *union.children_ids]
            )
        except sqlite3.Error as e:
            logger.error(f"Lineage cache refresh after {union.union_id} failed: {e}")

    # =========================================================================
    # READS
    # =========================================================================

    def get_union(self, union_id: str) -> Union:
        union = self.store.get_union(union_id)
        if not union:
            raise NotFound(f"Union {union_id} not found")
        return union

    def list_pending(self) -> List[Union]:
        """Unions awaiting verification, newest first."""
        return self.store.find_unions(
            verification_status=VerificationStatus.PENDING, newest_first=True
        )

    def list_by_member(self, member_id: str) -> List[Union]:
        """Unions where the member is husband, wife or child."""
        return self.store.find_unions(member_id=member_id)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def add_child(self, union_id: str, child_id: str) -> Union:
        """
        Attach a child to a union. Repeating the call changes nothing.

        Raises:
            NotFound: union or child does not exist
            ValidationError: the child already belongs to another live union
        """
        before = self.get_union(union_id)
        if not self.store.get_member(child_id):
            raise NotFound(f"Child {child_id} not found")

        union = self.store.append_child(union_id, child_id)
        if union is None:
            raise NotFound(f"Union {union_id} not found")
        if child_id not in before.children_ids:
            logger.info(f"Added child {child_id} to union {union_id}")

        self._after_write(
            union,
            lambda: self.store.update_member(child_id, parental_union_id=union.union_id)
        )
        return union

    def verify(
        self,
        union_id: str,
        action: str,
        actor_id: str,
        rejection_reason: str = None
    ) -> Union:
        """
        Approve or reject a pending union.

        Raises:
            NotFound: union does not exist
            InvalidAction: action is not approve/reject
            AlreadyFinalized: union was already approved or rejected
        """
        union = self.get_union(union_id)

        new_status = VERIFY_ACTIONS.get(action)
        if new_status is None:
            raise InvalidAction(f"Invalid action '{action}'. Use approve or reject")

        if union.verification.status != VerificationStatus.PENDING:
            raise AlreadyFinalized(
                f"Union {union_id} is already {union.verification.status.value}"
            )

        union.verification.status = new_status
        if new_status == VerificationStatus.APPROVED:
            union.verification.is_verified = True
        else:
            union.verification.rejection_reason = rejection_reason

        union.verification.verified_by = actor_id
        union.verification.verified_at = datetime.now()

        if not self.store.finalize_verification(union):
            current = self.get_union(union_id)
            raise AlreadyFinalized(
                f"Union {union_id} is already {current.verification.status.value}"
            )
        union = self.get_union(union_id)
        logger.info(f"Union {union_id} {new_status.value.lower()} by {actor_id}")
        return union

    def set_status(self, union_id: str, status: UnionStatus) -> Union:
        """Change the union status and re-sync the affected back-pointers."""
        union = self.get_union(union_id)
        try:
            union.status = UnionStatus(status)
        except ValueError as e:
            raise ValidationError(f"Unknown union status: {status}") from e
        union = self.store.save_union(union)
        logger.info(f"Union {union_id} status set to {union.status.value}")

        members = [union.husband_id, union.wife_id, *union.children_ids]
        self._after_write(union, lambda: self._resync(members))
        return union

    def soft_delete(self, union_id: str) -> Union:
        """Mark a union Deceased. The record is kept for history."""
        return self.set_status(union_id, UnionStatus.DECEASED)

    # =========================================================================
    # REPAIR
    # =========================================================================

    def _resync(self, member_ids: Iterable[str]) -> int:
        index = KinshipIndex.build(self.store.all_unions())
        members = self.store.get_members(member_ids)
        return self._apply_expected(members.values(), index, RepairReport())

    def _apply_expected(self, members, index: KinshipIndex, report: RepairReport) -> int:
        updated = 0
        for member in members:
            links = member.lineage_links
            current = index.current.get(member.id)
            parental = index.parental.get(member.id)
            expected_current = current.union_id if current else None
            expected_parental = parental.union_id if parental else None

            changes = {}
            if links.current_union_id != expected_current:
                changes["current_union_id"] = expected_current
                report.current_fixed += 1
            if links.parental_union_id != expected_parental:
                changes["parental_union_id"] = expected_parental
                report.parental_fixed += 1

            if changes:
                self.store.update_member(member.id, **changes)
                updated += 1
        return updated

    def repair_back_pointers(self) -> RepairReport:
        """Recompute every member's union pointers from a full scan of unions."""
        report = RepairReport()
        index = KinshipIndex.build(self.store.all_unions())
        members = self.store.all_members()
        report.members_checked = len(members)

        updated = self._apply_expected(members, index, report)
        logger.info(
            f"Back-pointer repair checked {report.members_checked} members, "
            f"updated {updated}"
        )
        return report
