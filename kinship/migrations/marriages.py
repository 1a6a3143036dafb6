"""
Marriage backfill - derives Marriage edges from the legacy Member.spouse_id field.

Safe to re-run: a pair that already has a marriage in either husband/wife
ordering is skipped, so a second run creates nothing.
"""

import sqlite3
import threading
from typing import Optional

from loguru import logger

from kinship.errors import DuplicateMarriage, InvalidGenderCombination, KinshipError, NotFound
from kinship.graph.models import Gender, Marriage, MarriageStatus, Member, validate_document
from kinship.graph.store import KinshipStore
from kinship.migrations.report import PassReport


def assign_roles(member: Member, spouse: Member) -> tuple[Member, Member]:
    """(husband, wife): the male party is the husband whatever the insertion order."""
    males = [m for m in (member, spouse) if m.gender == Gender.MALE]
    if len(males) != 1:
        raise InvalidGenderCombination(
            f"Cannot assign husband role between {member.id} ({member.gender}) "
            f"and {spouse.id} ({spouse.gender})"
        )
    husband = males[0]
    wife = spouse if husband is member else member
    return husband, wife


class MarriageBackfillPass:
    """Create one Active marriage per legacy spouse pair."""

    name = "marriages"

    def __init__(self, store: KinshipStore, stop_event: Optional[threading.Event] = None):
        self.store = store
        self.stop_event = stop_event

    def run(self) -> PassReport:
        report = PassReport(self.name)
        members = self.store.members_with_legacy_spouse()
        logger.info(f"Starting marriage backfill over {len(members)} members with a spouse reference")

        for member in members:
            if self.stop_event is not None and self.stop_event.is_set():
                report.interrupted = True
                logger.warning("Marriage backfill interrupted between records")
                break

            report.processed += 1
            try:
                created = self.reconcile(member)
            except (KinshipError, sqlite3.Error) as e:
                report.record_error(member.id, e)
                continue

            if created:
                report.created += 1
            else:
                report.skipped += 1

        logger.info(report.summary)
        return report

    def reconcile(self, member: Member) -> bool:
        """Create the marriage for one member. Returns False when nothing was needed."""
        spouse_id = member.spouse_id
        if not spouse_id or spouse_id == member.id:
            logger.debug(f"Skipping self-referencing spouse on {member.id}")
            return False

        if self.store.find_marriage(member.id, spouse_id):
            return False

        spouse = self.store.get_member(spouse_id)
        if not spouse:
            raise NotFound(f"Spouse {spouse_id} of {member.id} not found")

        husband, wife = assign_roles(member, spouse)
        marriage = validate_document(Marriage, {
            "husband_id": husband.id,
            "wife_id": wife.id,
            "status": MarriageStatus.ACTIVE,
        })

        try:
            marriage_id = self.store.insert_marriage(marriage)
        except DuplicateMarriage:
            # Another run inserted the pair since the existence check
            return False

        logger.info(f"Created marriage {marriage_id}: {husband.id} -> {wife.id}")
        return True
