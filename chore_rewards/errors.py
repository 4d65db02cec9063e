"""Error kinds raised by the chore and reward services.

Every message is meant to be shown to the user as-is.
"""


class ChoreRewardsError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PermissionDeniedError(ChoreRewardsError):
    """A role or capability check failed."""


class NotFoundOrForbiddenError(ChoreRewardsError):
    """An update or delete matched no rows.

    The store cannot tell a missing row from one the caller may not touch.
    """


class InvalidTransitionError(ChoreRewardsError):
    """The requested status change is not allowed from the current status."""


class InvalidFieldError(ChoreRewardsError, ValueError):
    """A field value is missing, out of range or not one of the known values."""


class StoreError(ChoreRewardsError):
    """The underlying database failed."""


class CompensationFailure(StoreError):
    """Undoing a partially applied operation failed as well.

    ``original`` is the error that triggered the compensation.
    """

    def __init__(self, message: str, original: BaseException):
        super().__init__(message)
        self.original = original


class NotificationDeliveryFailure(ChoreRewardsError):
    """A notification could not be stored. Logged, never raised to callers."""
