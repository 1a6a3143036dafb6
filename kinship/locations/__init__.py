"""Geographic lookup client and code-to-name resolver."""
from kinship.locations.client import LocationLookupClient
from kinship.locations.resolver import DISTRICT, STATE, TALUKA, HierarchicalResolver, LevelIndex

__all__ = ["LocationLookupClient", "HierarchicalResolver", "LevelIndex", "STATE", "DISTRICT", "TALUKA"]
