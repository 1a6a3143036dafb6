"""Error taxonomy for the kinship registry.

Business errors are raised before any write happens, so callers never need
to roll anything back when they see one of these.
"""


class KinshipError(Exception):
    """Base class for all registry errors."""


class NotFound(KinshipError):
    """A referenced member, union or child does not exist."""


class InvalidGenderCombination(KinshipError):
    """Union requested with a husband who is not Male or a wife who is not Female."""


class DuplicateUnion(KinshipError):
    """The unordered (husband, wife) pair already has a live union."""


class DuplicateMarriage(KinshipError):
    """The (husband, wife) pair already has a marriage record."""


class InvalidAction(KinshipError):
    """Verification action outside approve/reject."""


class AlreadyFinalized(KinshipError):
    """The union has already been approved or rejected."""


class ExternalLookupUnavailable(KinshipError):
    """Geographic lookup service unreachable, timed out or answered garbage."""


class ValidationError(KinshipError):
    """A document violates its schema contract."""
