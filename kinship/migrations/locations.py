"""
Location backfill - fills state/district/taluka/village names on members.

Also recomputes full_name from the name parts. Records are handled one at a
time; a lookup outage on one record leaves it for the next run and any other
failure is recorded against that record; neither stops the pass.
"""

import sqlite3
import threading
from typing import Optional

from loguru import logger

from kinship.errors import ExternalLookupUnavailable, KinshipError
from kinship.graph.models import Member
from kinship.graph.store import KinshipStore
from kinship.locations.resolver import DISTRICT, STATE, TALUKA, HierarchicalResolver, is_numeric
from kinship.migrations.report import PassReport


class LocationReconciliationPass:
    """Denormalize human-readable location names onto members."""

    name = "locations"

    def __init__(
        self,
        store: KinshipStore,
        resolver: HierarchicalResolver,
        stop_event: Optional[threading.Event] = None
    ):
        self.store = store
        self.resolver = resolver
        self.stop_event = stop_event

    def run(self) -> PassReport:
        """
        Process every member.

        Raises:
            ExternalLookupUnavailable: the state list could not be loaded,
                so the pass cannot run at all
        """
        report = PassReport(self.name)
        self.resolver.index(STATE)

        members = self.store.all_members()
        logger.info(f"Found {len(members)} members to process")

        for member in members:
            if self.stop_event is not None and self.stop_event.is_set():
                report.interrupted = True
                logger.warning("Location backfill interrupted between records")
                break

            report.processed += 1
            try:
                updates = self.plan_updates(member)
            except ExternalLookupUnavailable as e:
                report.unresolved += 1
                logger.warning(f"Member {member.id} unresolved, retry later: {e}")
                continue
            except Exception as e:
                report.record_error(member.id, e)
                continue

            if not updates:
                report.skipped += 1
                continue

            try:
                self.store.update_member(member.id, **updates)
            except (KinshipError, sqlite3.Error) as e:
                report.record_error(member.id, e)
                continue

            report.updated += 1
            logger.info(f"Updated member {member.full_name}: {updates}")

        logger.info(report.summary)
        return report

    def plan_updates(self, member: Member) -> dict:
        """Field updates for one member; empty when nothing is missing."""
        updates = {}
        resolver = self.resolver

        full_name = member.composed_name
        if full_name and member.full_name != full_name:
            updates["full_name"] = full_name

        if member.state and not member.state_name:
            name = resolver.resolve_name(STATE, member.state)
            if name:
                updates["state_name"] = name

        need_district = bool(member.district and not member.district_name)
        need_taluka = bool(member.city and not member.taluka_name)

        state_code = None
        if member.state and (need_district or need_taluka):
            state_code = resolver.resolve_code(STATE, member.state)

        if state_code and need_district:
            name = resolver.resolve_name(DISTRICT, member.district, state_code)
            if name:
                updates["district_name"] = name

        district_code = None
        if member.district and need_taluka:
            if is_numeric(member.district):
                district_code = str(member.district).strip()
            elif state_code:
                district_code = resolver.resolve_code(DISTRICT, member.district, state_code)

        if district_code and need_taluka:
            name = resolver.resolve_name(TALUKA, member.city, district_code)
            if name:
                updates["taluka_name"] = name

        # No lookup exists for villages
        if member.city and member.village and not member.village_name:
            if not is_numeric(member.village):
                updates["village_name"] = member.village

        return updates
