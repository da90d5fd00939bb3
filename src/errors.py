"""
Exception types used across the marker detection pipeline.

Per-candidate rejections are not errors and never raise; these types cover
per-frame failures and rejected configuration values.
"""


class CodiceCamError(Exception):
    """Base class for all pipeline errors."""


class DetectionError(CodiceCamError):
    """A frame could not be processed."""


class InputError(DetectionError):
    """The input frame is empty or malformed."""


class ConfigurationError(CodiceCamError, ValueError):
    """A setter received values outside of its contract."""

    def __init__(self, field_name: str, value, reason: str):
        self.field_name = field_name
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field_name}={value!r}: {reason}")
