class RebalancerError(Exception):
    """Base exception for all rebalancing engine errors."""

    pass


class InputError(RebalancerError):
    """Raised when the caller supplies invalid input; nothing is computed."""

    pass


class MissingModelError(InputError):
    """Raised when a rebalancing group has no assigned model."""

    pass


class ModelWeightError(InputError):
    """Raised when model weights do not sum to 10,000 basis points."""

    pass


class UnknownStrategyError(InputError):
    """Raised when a rebalance strategy name is not recognised."""

    pass


class RestrictionStoreUnavailable(RebalancerError):
    """Raised by a wash-sale store when its data source cannot be read."""

    pass


class InvariantViolation(RebalancerError):
    """Raised when a generated plan would break a hard trading invariant."""

    pass


class LockUnavailable(RebalancerError):
    """Raised when an account lock cannot be acquired in time."""

    pass
