# app/upload/errors.py
# Request-level failures. Per-listing failures are never raised past the
# apply driver; they end up in the checkpoint's failed list instead.


class CsvParseError(ValueError):
    """The uploaded file is not a usable listings sheet."""


class MissingPrerequisiteError(RuntimeError):
    """Something the whole run depends on (e.g. create defaults) is unavailable."""


class InventoryPayloadError(ValueError):
    """The variation set for one listing cannot form a valid inventory write."""
