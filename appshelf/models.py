"""
Data model shared by the package sources, the list store and the manager.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

WINGET = "winget"
CHOCOLATEY = "chocolatey"

# The "Default" list is seeded with this id on first run and can never be deleted.
DEFAULT_LIST_ID = 1
DEFAULT_LIST_NAME = "Default"
DEFAULT_LIST_DESCRIPTION = "Default saved applications list"

ALL_SOURCES = "All Sources"


class ViewFilter(str, Enum):
    """Base population shown when not in search mode."""

    ALL_RESULTS = "All Results"
    INSTALLED_ONLY = "Installed Only"
    SAVED_APPS = "Saved Apps"


@dataclass
class ApplicationRecord:
    """A single application as reported by a package source or a saved list."""

    name: str
    package_id: str
    version: str = ""
    source: str = ""
    description: str = ""
    is_installed: bool = False
    is_saved: bool = False
    # Membership hint for the currently selected list only
    list_id: Optional[int] = None

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on name or package id."""
        needle = query.lower()
        return needle in self.name.lower() or needle in self.package_id.lower()


@dataclass
class AppList:
    """A user-named collection of saved applications."""

    id: int
    name: str
    description: str = ""
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_default(self) -> bool:
        return self.id == DEFAULT_LIST_ID


@dataclass
class ImportResult:
    """Outcome of importing one CSV file."""

    path: str
    list_name: str = ""
    imported_count: int = 0
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None
