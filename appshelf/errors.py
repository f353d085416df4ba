"""
Exception hierarchy for AppShelf.

Callers catch ``AppshelfError`` to handle anything the package raises on
purpose; the subclasses let the CLI and tests tell the failure kinds apart.
"""


class AppshelfError(Exception):
    """Base class for all AppShelf errors."""


class SourceError(AppshelfError):
    """A package manager invocation failed (non-zero exit, timeout, missing binary)."""


class SourceUnavailableError(SourceError):
    """The package manager needed for an operation is not installed or not responding."""


class UnknownSourceError(SourceError):
    """A record names a source that no adapter is registered for."""


class InstallError(AppshelfError):
    """Installing an application from a list failed."""


class StoreError(AppshelfError):
    """The list database rejected an operation."""


class DuplicateListError(StoreError):
    """A list with the requested name already exists."""


class ListNotFoundError(StoreError):
    """No list matches the requested id or name."""


class ValidationError(AppshelfError):
    """Input was rejected before any side effect was attempted."""


class DefaultListError(ValidationError):
    """The default list cannot be deleted."""


class LastSourceError(ValidationError):
    """At least one package source must stay enabled."""


class ImportFormatError(AppshelfError):
    """A CSV file does not have the expected shape."""
