"""
Error taxonomy for the schablone framework.

Configuration errors signal a caller contract violation and are raised before
any stage runs. Data quality errors are raised for a single malformed template
or scene. Empty results are never errors.
"""


class SchabloneError(Exception):
    """Base class for all schablone errors."""


class ConfigurationError(SchabloneError, ValueError):
    """Invalid criteria, empty template set or an untrained stage."""


class DataQualityError(SchabloneError, ValueError):
    """A template or scene that cannot be processed."""
