"""
Chocolatey source for AppShelf.

``--limit-output`` makes ``choco`` print one ``name|version`` line per
package, which ``parse_choco_lines`` understands.
"""

from typing import List

from appshelf.models import CHOCOLATEY, ApplicationRecord
from appshelf.sources.command import CommandSource
from appshelf.sources.parsers import parse_choco_lines, parse_choco_list


class ChocolateySource(CommandSource):
    """Chocolatey (``choco``) source."""

    name = CHOCOLATEY
    default_binary = "choco"
    default_commands = {
        "probe": ("--version",),
        "search": ("search", "{query}", "--limit-output"),
        # Chocolatey 2.x dropped --local-only; override "list" in the config there
        "list": ("list", "--local-only", "--limit-output"),
        "install": ("install", "{package_id}", "-y"),
    }

    def search(self, query: str) -> List[ApplicationRecord]:
        return self._query("search", parse_choco_lines, query=query)

    def get_installed_apps(self) -> List[ApplicationRecord]:
        return self._query("list", parse_choco_list)
