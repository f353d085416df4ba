"""
List store package for AppShelf.

This module defines the persistence contract the manager relies on for named
lists and list membership. ``appshelf.store.sqlite`` implements it on SQLite.
"""

import abc
from typing import List

from appshelf.models import AppList, ApplicationRecord


class ListGateway(abc.ABC):
    """Base class for list stores."""

    @abc.abstractmethod
    def create_list(self, name: str, description: str = "") -> int:
        """
        Create a new list.

        Returns:
            The id of the new list

        Raises:
            DuplicateListError: If a list with this name already exists
        """
        pass

    @abc.abstractmethod
    def get_lists(self) -> List[AppList]:
        """Return every list, sorted by name."""
        pass

    @abc.abstractmethod
    def get_list_by_id(self, list_id: int) -> AppList:
        """Return one list, raising ``ListNotFoundError`` if absent."""
        pass

    @abc.abstractmethod
    def get_list_by_name(self, name: str) -> AppList:
        """Return one list by exact name, raising ``ListNotFoundError`` if absent."""
        pass

    @abc.abstractmethod
    def update_list(self, list_id: int, name: str, description: str = "") -> None:
        """Rename a list and replace its description."""
        pass

    @abc.abstractmethod
    def delete_list(self, list_id: int) -> None:
        """
        Delete a list and every membership row that references it.

        Raises:
            DefaultListError: If ``list_id`` is the default list
        """
        pass

    @abc.abstractmethod
    def save_app_to_list(self, list_id: int, app: ApplicationRecord) -> None:
        """
        Save a snapshot of *app* to a list.

        An existing row with the same (list, package id) is replaced.
        """
        pass

    @abc.abstractmethod
    def get_apps_in_list(self, list_id: int) -> List[ApplicationRecord]:
        """Return the apps saved to a list, sorted by name and marked saved."""
        pass

    @abc.abstractmethod
    def remove_app_from_list(self, list_id: int, package_id: str) -> None:
        """Remove a package from a list. Removing an absent package is a no-op."""
        pass

    @abc.abstractmethod
    def is_app_in_list(self, list_id: int, package_id: str) -> bool:
        """Return True if the package is saved to the list."""
        pass

    @abc.abstractmethod
    def get_app_lists_containing(self, package_id: str) -> List[AppList]:
        """Return every list the package is saved to, sorted by name."""
        pass
