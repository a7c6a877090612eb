"""Exceptions raised by the partner map services.

Call-level failures (registry down, illegal batch transition, unknown ids,
unusable uploads) are raised. Per-row and per-decision problems are never
raised out of a call; they are reported in the response payload instead.
"""


class PartnerMapError(Exception):
    """Base exception for partner map errors."""

    def __init__(self, message: str, retriable: bool = False):
        super().__init__(message)
        self.retriable = retriable


class RegistryUnavailableError(PartnerMapError):
    """The registry database is not reachable."""

    def __init__(self, message: str = "Registry is unavailable"):
        super().__init__(message, retriable=True)


class NotFoundError(PartnerMapError):
    """Referenced entity, node, batch or staging record does not exist."""

    def __init__(self, resource: str, resource_id: str | None = None):
        message = (
            f"{resource} with ID {resource_id} not found" if resource_id else f"{resource} not found"
        )
        super().__init__(message)
        self.resource = resource
        self.resource_id = resource_id


class IllegalStateTransitionError(PartnerMapError):
    """A batch was asked to move to a status its current status does not allow."""

    def __init__(self, batch_id: str, current: str, requested: str):
        super().__init__(
            f"Batch {batch_id} cannot move from '{current}' to '{requested}'"
        )
        self.batch_id = batch_id
        self.current = current
        self.requested = requested


class ConflictError(PartnerMapError):
    """The operation conflicts with the current registry state."""

    pass


class CSVFormatError(PartnerMapError):
    """The uploaded content is not a usable CSV."""

    def __init__(self, message: str, batch_id: str | None = None):
        super().__init__(message)
        self.batch_id = batch_id


class DecisionError(PartnerMapError):
    """A single decision could not be applied."""

    pass
