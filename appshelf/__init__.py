"""
AppShelf - search, install and curate desktop applications from winget and
Chocolatey.

Find what you need, keep lists of what you use, reinstall it anywhere.
"""

from importlib.metadata import version as _version

__version__ = _version("appshelf")
