from typing import Dict

from appshelf.config import AppshelfConfig
from appshelf.models import CHOCOLATEY, WINGET
from appshelf.sources import BaseSource
from appshelf.sources.chocolatey import ChocolateySource
from appshelf.sources.winget import WingetSource


def build_sources(config: AppshelfConfig) -> Dict[str, BaseSource]:
    """Create one adapter per known source, in search order (winget first)."""
    return {
        WINGET: WingetSource(config.sources.get(WINGET), config.timeouts),
        CHOCOLATEY: ChocolateySource(config.sources.get(CHOCOLATEY), config.timeouts),
    }
