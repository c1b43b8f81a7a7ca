class NotFoundError(ValueError):
    """Entity is missing or not owned by the calling user."""


class AlreadyPaidError(ValueError):
    pass


class NotPaidError(ValueError):
    pass


class InvalidPeriodError(ValueError):
    pass


class InUseError(ValueError):
    """Entity is still referenced and cannot be deleted."""
