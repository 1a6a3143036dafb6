"""Result record shared by the reconciliation passes."""

from dataclasses import dataclass, field
from typing import List

from loguru import logger


@dataclass
class PassReport:
    """Counts reported by a reconciliation pass."""
    name: str
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errored: int = 0
    unresolved: int = 0     # lookup unavailable, retry on the next run
    interrupted: bool = False
    errors: List[str] = field(default_factory=list)

    def record_error(self, record_id: str, error: Exception):
        self.errored += 1
        self.errors.append(f"{record_id}: {error}")
        logger.error(f"[{self.name}] record {record_id} failed: {error}")

    @property
    def summary(self) -> str:
        text = (
            f"{self.name}: processed {self.processed}, created {self.created}, "
            f"updated {self.updated}, skipped {self.skipped}, errored {self.errored}"
        )
        if self.unresolved:
            text += f", unresolved {self.unresolved}"
        if self.interrupted:
            text += " (interrupted, re-run to continue)"
        return text
