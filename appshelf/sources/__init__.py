"""
Package source package for AppShelf.

This module provides the base class for package sources: adapters that shell
out to an external package manager and turn its output into
``ApplicationRecord`` objects. Implementations live in the submodules
(winget, Chocolatey).
"""

import abc
from typing import List

from appshelf.models import ApplicationRecord


class BaseSource(abc.ABC):
    """Base class for package sources."""

    #: Value stored in ``ApplicationRecord.source`` for records from this source
    name: str = ""

    @abc.abstractmethod
    def is_available(self) -> bool:
        """
        Probe the package manager.

        Returns:
            True if the binary answered within the probe timeout. Never raises.
        """
        pass

    @abc.abstractmethod
    def search(self, query: str) -> List[ApplicationRecord]:
        """
        Search the package manager's catalog.

        Args:
            query: Free-text search term

        Returns:
            Matching records in the order the tool printed them

        Raises:
            SourceError: If the invocation failed or timed out
        """
        pass

    @abc.abstractmethod
    def get_installed_apps(self) -> List[ApplicationRecord]:
        """
        List applications installed through this package manager.

        Returns:
            Records with ``is_installed`` set

        Raises:
            SourceError: If the invocation failed or timed out
        """
        pass

    @abc.abstractmethod
    def install(self, package_id: str) -> None:
        """
        Install a package.

        Args:
            package_id: Identifier understood by the package manager

        Raises:
            SourceError: If the installation failed or timed out
        """
        pass
