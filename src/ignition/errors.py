"""Exceptions raised while registering, resolving and awaiting components."""

from typing import Optional

__all__ = [
    "StartupError",
    "RegistrationError",
    "UnknownComponent",
    "CycleDetected",
    "InitializationFailed",
    "AggregateAwaitFailure",
    "DiscoveryError",
]


class StartupError(Exception):
    """Base class for all errors raised by the framework."""

    pass


class RegistrationError(StartupError):
    """Raised when an initializer is misdeclared or registered twice."""

    pass


class UnknownComponent(StartupError, LookupError):
    """Raised when no initializer is registered under an identity."""

    def __init__(self, identity: str):
        super().__init__(f"No initializer registered for component '{identity}'")
        self.identity = identity


class CycleDetected(StartupError):
    """Raised when a dependency chain revisits a component it is still resolving.

    Attributes:
        identity: The component that closed the cycle.
    """

    def __init__(self, identity: str):
        super().__init__(f"Cannot initialize {identity}. Cycle detected.")
        self.identity = identity


class InitializationFailed(StartupError):
    """Raised when a component's initializer could not be obtained or failed in ``create``.

    The failed component is never cached, so resolving it again re-runs its
    initializer from scratch.

    Attributes:
        identity: The component whose construction failed.
        cause: The original exception.
    """

    def __init__(self, identity: str, cause: BaseException):
        super().__init__(f"Error initializing {identity}: {cause!r}")
        self.identity = identity
        self.cause = cause


class AggregateAwaitFailure(StartupError):
    """Raised by the job barrier when a tracked job failed.

    Only the first failure (in completion order) is reported.
    """

    def __init__(self, cause: BaseException, job_name: Optional[str] = None):
        where = f" in job '{job_name}'" if job_name else ""
        super().__init__(f"Startup job failed{where}: {cause!r}")
        self.cause = cause
        self.job_name = job_name


class DiscoveryError(StartupError):
    """Raised when the discovery collaborator cannot produce descriptors."""

    pass
