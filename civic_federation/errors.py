"""
Federation Error Taxonomy

Every error carries a machine-readable ``kind`` that the HTTP layer
returns verbatim so callers can branch without parsing messages.
"""

from typing import Any


class FederationError(Exception):
    """Base error for the federation engine."""

    kind = "federation_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ProposalValidationError(FederationError):
    """Proposal submission violated a field constraint."""

    kind = "validation"

    def __init__(self, message: str, field: str):
        super().__init__(message, {"field": field})
        self.field = field


class RegistryFetchError(FederationError):
    """Registry snapshot could not be retrieved."""

    kind = "fetch"


class NodeTransportError(FederationError):
    """Federation node unreachable or rejected a push."""

    kind = "fetch"


class SyncTimeoutError(FederationError):
    """A check, fetch or node push exceeded its deadline."""

    kind = "timeout"


class ConsistencyViolationError(FederationError):
    """Internal invariant broken. Indicates a bug, not an environmental failure."""

    kind = "consistency_violation"
