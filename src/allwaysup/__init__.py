"""allwaysup: Provisioning and recurring git mirroring for a service account.

This package provides the installer (service account, SSH identity, working
repository and bare mirror), the recurring mirror and commit/push jobs, and
the scheduler registration that ties them together.
"""

from . import (
    bootstrap,
    cli,
    commit,
    config,
    constants,
    errors,
    git_wrapper,
    joblog,
    keys,
    mirror,
    repo,
    service,
    system,
)

__all__ = [
    "bootstrap",
    "cli",
    "commit",
    "config",
    "constants",
    "errors",
    "git_wrapper",
    "joblog",
    "keys",
    "mirror",
    "repo",
    "service",
    "system",
]
