"""
OperationContext -- explicit tenant, branch and actor scoping.

Every kernel call receives one of these.  The kernel never infers a tenant
from ambient state (thread locals, globals, request objects) and never
issues a query without the tenant predicate.  The location is an opaque
branch key; authorization is entirely the caller's responsibility.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from ledger_kernel.exceptions import InvalidContextError


@dataclass(frozen=True, slots=True)
class OperationContext:
    """
    Immutable scoping value threaded through every kernel operation.

    Guarantees:
        - tenant_id and actor_id are non-empty strings.
        - location_id is None or a non-empty string.
    """

    tenant_id: str
    actor_id: str
    location_id: str | None = None
    correlation_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.tenant_id, str) or not self.tenant_id.strip():
            raise InvalidContextError("tenant_id", "a tenant identifier is required")
        if not isinstance(self.actor_id, str) or not self.actor_id.strip():
            raise InvalidContextError("actor_id", "an actor identifier is required")
        if self.location_id is not None and not str(self.location_id).strip():
            raise InvalidContextError("location_id", "location must be non-empty when given")

    def at_location(self, location_id: str) -> OperationContext:
        """Same tenant and actor, scoped to another branch."""
        return replace(self, location_id=location_id)

    def require_location(self, override: str | None = None) -> str:
        """
        Resolve the branch key for a location-scoped operation.

        Raises:
            InvalidContextError: neither an override nor a context location.
        """
        location = override or self.location_id
        if not location:
            raise InvalidContextError(
                "location_id", "this operation requires a location/branch key"
            )
        return location

    def log_fields(self) -> dict[str, str | None]:
        """Fields for LogContext.bind()."""
        return {
            "tenant_id": self.tenant_id,
            "actor_id": self.actor_id,
            "location_id": self.location_id,
            "correlation_id": self.correlation_id,
        }
