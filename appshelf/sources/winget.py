"""
winget source for AppShelf.

Wraps the Windows Package Manager CLI. Its search and list commands print a
column-aligned table that ``parse_winget_table`` understands.
"""

from typing import List

from appshelf.models import WINGET, ApplicationRecord
from appshelf.sources.command import CommandSource
from appshelf.sources.parsers import parse_winget_list, parse_winget_table


class WingetSource(CommandSource):
    """Windows Package Manager (``winget``) source."""

    name = WINGET
    default_binary = "winget"
    default_commands = {
        "probe": ("--version",),
        "search": ("search", "{query}", "--accept-source-agreements"),
        "list": ("list", "--accept-source-agreements"),
        "install": (
            "install",
            "{package_id}",
            "--accept-source-agreements",
            "--accept-package-agreements",
        ),
    }

    def search(self, query: str) -> List[ApplicationRecord]:
        return self._query("search", parse_winget_table, query=query)

    def get_installed_apps(self) -> List[ApplicationRecord]:
        return self._query("list", parse_winget_list)
