"""Exception hierarchy for the server manager."""


class CrossplayError(Exception):
    """Base class for all manager errors."""


class ConfigError(CrossplayError):
    """Configuration document could not be read or written."""


class BackupError(CrossplayError):
    """World backup failed (copy or removal of the original)."""


class ProcessSpawnError(CrossplayError):
    """Subprocess could not be started (missing binary, permission denied...)."""
