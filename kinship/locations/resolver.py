"""
Hierarchical code-to-name resolver.

Location fields on members hold either lookup codes or names. Each level of
the hierarchy (state -> district -> taluka) is fetched once per parent code
and kept as a two-way index: code/id -> name and NAME -> code.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from loguru import logger

from kinship.locations.client import LocationLookupClient

_NUMERIC = re.compile(r"\s*[+-]?\d")


def is_numeric(value) -> bool:
    """True when the value starts like a number, i.e. looks like a code."""
    return value is not None and bool(_NUMERIC.match(str(value)))


@dataclass(frozen=True)
class LocationLevel:
    """One level of the hierarchy and how to query it."""
    name: str
    endpoint: str
    result_key: str
    parent_params: tuple[str, ...] = ()   # primary first, fallback after


STATE = LocationLevel("state", "states", "states")
DISTRICT = LocationLevel("district", "districts", "districts", ("state_code", "state_id"))
TALUKA = LocationLevel("taluka", "talukas", "talukas", ("district_code", "district_id"))


@dataclass
class LevelIndex:
    """Two-way lookup for the records of one level under one parent."""
    codes: dict[str, str] = field(default_factory=dict)
    names: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_records(cls, records: list[dict]) -> "LevelIndex":
        index = cls()
        for record in records:
            name = record.get("name")
            if not isinstance(name, str) or not name.strip():
                logger.debug(f"Skipping location record without a usable name: {record}")
                continue
            name = name.strip()
            codes = [str(record[k]) for k in ("code", "id") if isinstance(record.get(k), (str, int))]
            for code in codes:
                index.codes[code.strip()] = name
            if codes:
                index.names[name.upper()] = codes[0].strip()
        return index

    def name_for(self, code) -> Optional[str]:
        return self.codes.get(str(code).strip()) if code is not None else None

    def code_for(self, name) -> Optional[str]:
        return self.names.get(str(name).strip().upper()) if name else None


class HierarchicalResolver:
    """Resolve codes to names level by level with a per-parent cache."""

    def __init__(self, client: LocationLookupClient):
        self.client = client
        self._cache: dict[tuple[str, Optional[str]], LevelIndex] = {}
        self.lookups = 0

    def index(self, level: LocationLevel, parent_code: Optional[str] = None) -> LevelIndex:
        """Cached index for a level; a lookup failure is not cached."""
        key = (level.name, parent_code)
        if key in self._cache:
            return self._cache[key]

        logger.debug(f"Fetching {level.endpoint} for {parent_code or 'root'}")
        param_options = [{p: parent_code} for p in level.parent_params] or [{}]
        records = self.client.fetch_records(level.endpoint, level.result_key, param_options)
        self.lookups += 1
        if records is None:
            logger.warning(f"{level.endpoint} lookup for {parent_code or 'root'} reported failure")
            return LevelIndex()

        self._cache[key] = LevelIndex.from_records(records)
        return self._cache[key]

    def resolve_name(self, level: LocationLevel, value, parent_code: Optional[str] = None) -> Optional[str]:
        """Name for a stored value: cached code lookup, else the value itself if it is text."""
        if not value:
            return None
        name = self.index(level, parent_code).name_for(value)
        if name:
            return name
        return None if is_numeric(value) else str(value)

    def resolve_code(self, level: LocationLevel, value, parent_code: Optional[str] = None) -> Optional[str]:
        """Code for a stored value: numbers are codes already, names go through the reverse index."""
        if not value:
            return None
        if is_numeric(value):
            return str(value).strip()
        return self.index(level, parent_code).code_for(value)
