"""Exception taxonomy for provisioning and recurring jobs."""


class AllwaysupError(Exception):
    """Base class for every fatal condition reported to the operator."""


class PreconditionError(AllwaysupError):
    """A run-time precondition does not hold (privileges, paths, mirror target)."""


class ProvisioningError(AllwaysupError):
    """An install-time step failed. Later steps depend on it, so the install aborts."""


class BootstrapError(AllwaysupError):
    """The initial pull cannot proceed safely and needs manual intervention."""
