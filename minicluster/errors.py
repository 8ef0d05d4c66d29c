"""
Error types raised by the cluster harness.
"""


class ClusterError(Exception):
    """Base class for all harness errors."""


class ConfigurationError(ClusterError):
    """Invalid size, conflicting TLS modes or malformed TLS file paths."""


class ProvisioningError(ClusterError):
    """Certificate generation or parsing failed."""


class LaunchError(ClusterError):
    """A node process failed to start or to bind its listeners."""


class ConvergenceTimeoutError(ClusterError):
    """A node or the cluster did not become ready in time."""


class NodeIndexError(ClusterError, IndexError):
    """A node index outside of [0, size)."""


class LifecycleError(ClusterError):
    """An operation was issued against a node in the wrong state."""


class ShutdownError(ClusterError):
    """A node process could not be terminated, even with SIGKILL."""
