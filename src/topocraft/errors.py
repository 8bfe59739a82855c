"""Exception taxonomy for topocraft.

Planning errors (validation, cycles, conflicts) abort before any remote
call is made. Provider errors are raised by adapters and recorded per
operation by the executor.
"""
from typing import Iterable, Optional


class TopologyError(Exception):
    """Base class for all topocraft errors."""
    pass


class ValidationError(TopologyError):
    """Desired state is malformed."""

    def __init__(self, message: str, errors: Optional[Iterable[str]] = None):
        self.errors = list(errors) if errors else [message]
        super().__init__(message)


class ParseError(ValidationError):
    """Declaration document could not be turned into resources."""
    pass


class CycleError(TopologyError):
    """The dependency graph contains at least one cycle."""

    def __init__(self, members: Iterable[str]):
        self.members = list(members)
        super().__init__(
            f"Dependency cycle between: {', '.join(self.members)}"
        )


class ConflictError(TopologyError):
    """An update would change a property that cannot be updated in place."""

    def __init__(self, resource: str, properties: Iterable[str]):
        self.resource = resource
        self.properties = sorted(properties)
        super().__init__(
            f"Cannot update {resource} in place: immutable "
            f"{'property' if len(self.properties) == 1 else 'properties'} "
            f"{', '.join(self.properties)} changed"
        )


class ProviderError(TopologyError):
    """A remote call made through a provider adapter failed."""
    transient = False

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        transient: Optional[bool] = None,
    ):
        self.resource = resource
        if transient is not None:
            self.transient = transient
        super().__init__(message)


class TransientProviderError(ProviderError):
    """Provider failure expected to succeed on retry (throttling, timeouts)."""
    transient = True


class PermanentProviderError(ProviderError):
    """Provider failure that will not go away by retrying."""
    transient = False


PLANNING_ERRORS = (ValidationError, CycleError, ConflictError)
