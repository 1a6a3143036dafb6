"""Idempotent reconciliation passes over legacy member fields."""
from kinship.migrations.locations import LocationReconciliationPass
from kinship.migrations.marriages import MarriageBackfillPass
from kinship.migrations.report import PassReport

__all__ = ["LocationReconciliationPass", "MarriageBackfillPass", "PassReport"]
