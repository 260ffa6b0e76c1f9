class HopperloadError(Exception):
    """Base class for errors raised by hopperload."""


class ConfigurationError(HopperloadError, ValueError):
    """Invalid run configuration, detected before the run starts."""


class OperationCancelled(HopperloadError):
    """An awaited operation was abandoned because its run was cancelled."""
