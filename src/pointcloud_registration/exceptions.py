"""
Exception hierarchy for point cloud registration.

Every error raised on purpose by the package derives from RegistrationError so
callers (and the CLI) can catch the whole family in one place.
"""


class RegistrationError(Exception):
    """Base class for all registration errors."""


class LoadError(RegistrationError):
    """A point cloud file is missing, unreadable, unsupported or empty."""

    def __init__(self, path, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Failed to load point cloud '{self.path}': {reason}")


class ConfigError(RegistrationError, ValueError):
    """Invalid user supplied parameter."""


class InvalidVoxelSizeError(ConfigError):
    pass


class InvalidMeasurementError(ConfigError):
    pass


class InvalidScaleRatioError(ConfigError):
    pass


class UnknownMethodError(ConfigError):
    pass


class AlignmentError(RegistrationError):
    """The alignment could not be computed at all."""


class EmptyCloudError(AlignmentError):
    pass


class InsufficientCorrespondencesError(AlignmentError):
    pass


class ExportError(RegistrationError):
    """The transformed cloud could not be written."""

    def __init__(self, path, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Failed to export point cloud to '{self.path}': {reason}")
