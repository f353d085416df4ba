"""
Shared fixtures for the unit tests.
"""

from pathlib import Path
from typing import Generator

import pytest
from fakes import FakeSource, InlineExecutor, choco_app, winget_app

from appshelf.config import AppshelfConfig
from appshelf.manager import AppManager
from appshelf.models import CHOCOLATEY, WINGET
from appshelf.store.sqlite import SqlListStore


@pytest.fixture
def config(tmp_path: Path) -> AppshelfConfig:
    """Config pointing the database and exports into a temp dir."""
    return AppshelfConfig(
        database_path=tmp_path / "data" / "applications.db",
        exports_dir=tmp_path / "exports",
    )


@pytest.fixture
def store(config: AppshelfConfig) -> SqlListStore:
    return SqlListStore.from_path(config.database_path)


@pytest.fixture
def winget() -> FakeSource:
    return FakeSource(
        WINGET,
        installed=[
            winget_app("Git", "Git.Git", "2.44.0", is_installed=True),
            winget_app("Visual Studio Code", "Microsoft.VisualStudioCode", "1.88.0", is_installed=True),
        ],
        catalog=[
            winget_app("Git", "Git.Git", "2.44.0"),
            winget_app("GitHub Desktop", "GitHub.GitHubDesktop", "3.3.0"),
            winget_app("Mozilla Firefox", "Mozilla.Firefox", "125.0"),
        ],
    )


@pytest.fixture
def choco() -> FakeSource:
    return FakeSource(
        CHOCOLATEY,
        installed=[choco_app("7zip", "23.1.0", is_installed=True)],
        catalog=[choco_app("git", "2.44.0"), choco_app("firefox", "125.0")],
    )


@pytest.fixture
def manager(
    store: SqlListStore, winget: FakeSource, choco: FakeSource, config: AppshelfConfig
) -> Generator[AppManager, None, None]:
    """A started manager using fake sources and a real SQLite store."""
    mgr = AppManager(
        store, {WINGET: winget, CHOCOLATEY: choco}, config, executor=InlineExecutor()
    )
    mgr.start()
    yield mgr
    mgr.close()
