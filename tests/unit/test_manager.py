"""
Tests for the application state manager.
"""

import threading
from pathlib import Path
from typing import List
from unittest.mock import patch

import pytest
from fakes import FakeSource, InlineExecutor, choco_app, winget_app
from hypothesis import given, settings
from hypothesis import strategies as st

from appshelf.config import AppshelfConfig
from appshelf.errors import (
    DefaultListError,
    DuplicateListError,
    ImportFormatError,
    InstallError,
    LastSourceError,
    ListNotFoundError,
    SourceError,
    SourceUnavailableError,
    UnknownSourceError,
    ValidationError,
)
from appshelf.manager import AppManager
from appshelf.models import (
    ALL_SOURCES,
    CHOCOLATEY,
    DEFAULT_LIST_ID,
    DEFAULT_LIST_NAME,
    WINGET,
    AppList,
    ApplicationRecord,
    ViewFilter,
)
from appshelf.store.sqlite import SqlListStore


def package_ids(apps: List[ApplicationRecord]) -> List[str]:
    return [app.package_id for app in apps]


# ----------------------------------------------------------------------
# Startup and refresh
# ----------------------------------------------------------------------


def test_start_selects_default_list(manager: AppManager) -> None:
    current = manager.current_list
    assert current is not None
    assert current.id == DEFAULT_LIST_ID
    assert [lst.name for lst in manager.lists] == [DEFAULT_LIST_NAME]
    assert manager.view_filter is ViewFilter.INSTALLED_ONLY
    assert manager.source_filter == ALL_SOURCES


def test_refresh_concatenates_sources_in_order(manager: AppManager) -> None:
    manager.refresh_installed_apps()
    assert package_ids(manager.installed_apps) == [
        "Git.Git",
        "Microsoft.VisualStudioCode",
        "7zip",
    ]
    assert package_ids(manager.current_apps) == package_ids(manager.installed_apps)
    assert not manager.is_loading
    assert not manager.is_search_mode


def test_refresh_is_idempotent(manager: AppManager) -> None:
    manager.refresh_installed_apps()
    first = manager.current_apps
    manager.refresh_installed_apps()
    assert manager.current_apps == first


def test_refresh_skips_unavailable_and_failing_sources(
    manager: AppManager, winget: FakeSource, choco: FakeSource
) -> None:
    winget.available = False
    choco.fail_with = SourceError("choco command failed with exit code 1")
    manager.refresh_installed_apps()

    assert manager.installed_apps == []
    assert winget.list_calls == 0
    assert choco.list_calls == 1


def test_refresh_skips_disabled_source(
    manager: AppManager, choco: FakeSource
) -> None:
    manager.set_source_enabled(CHOCOLATEY, False)
    manager.refresh_installed_apps()

    assert choco.list_calls == 0
    assert package_ids(manager.installed_apps) == ["Git.Git", "Microsoft.VisualStudioCode"]


def test_refresh_marks_saved_apps(manager: AppManager) -> None:
    manager.save_app_to_current_list(winget_app("Git", "Git.Git"))
    manager.refresh_installed_apps()

    by_id = {app.package_id: app for app in manager.installed_apps}
    assert by_id["Git.Git"].is_saved
    assert by_id["Git.Git"].list_id == DEFAULT_LIST_ID
    assert not by_id["7zip"].is_saved


def test_loading_flag_is_visible_to_observers(manager: AppManager) -> None:
    seen: List[bool] = []
    manager.add_observer(lambda: seen.append(manager.is_loading))
    manager.refresh_installed_apps()

    assert seen[0] is True
    assert seen[-1] is False


# ----------------------------------------------------------------------
# Search
# ----------------------------------------------------------------------


def test_search_all_results_queries_enabled_sources(
    manager: AppManager, winget: FakeSource, choco: FakeSource
) -> None:
    manager.set_view_filter(ViewFilter.ALL_RESULTS)
    manager.search("git")

    assert winget.search_calls == ["git"]
    assert choco.search_calls == ["git"]
    assert manager.is_search_mode
    assert manager.search_query == "git"
    assert package_ids(manager.current_apps) == ["Git.Git", "GitHub.GitHubDesktop", "git"]


def test_search_installed_only_filters_in_memory(
    manager: AppManager, winget: FakeSource
) -> None:
    manager.refresh_installed_apps()
    manager.search("CODE")

    assert winget.search_calls == []
    assert package_ids(manager.current_apps) == ["Microsoft.VisualStudioCode"]


def test_search_saved_apps_filters_in_memory(manager: AppManager) -> None:
    manager.save_app_to_current_list(choco_app("firefox"))
    manager.save_app_to_current_list(choco_app("vlc"))
    manager.set_view_filter(ViewFilter.SAVED_APPS)
    manager.search("fire")

    assert package_ids(manager.current_apps) == ["firefox"]


def test_search_marks_saved_results(manager: AppManager) -> None:
    manager.save_app_to_current_list(winget_app("Mozilla Firefox", "Mozilla.Firefox"))
    manager.set_view_filter(ViewFilter.ALL_RESULTS)
    manager.search("firefox")

    saved = {app.package_id: app.is_saved for app in manager.current_apps}
    assert saved == {"Mozilla.Firefox": True, "firefox": False}


def test_empty_search_exits_search_mode(manager: AppManager) -> None:
    manager.set_view_filter(ViewFilter.ALL_RESULTS)
    manager.search("x")
    assert manager.is_search_mode

    manager.search("")
    assert not manager.is_search_mode
    assert manager.search_query == ""


def test_search_with_all_sources_failing_is_empty(
    manager: AppManager, winget: FakeSource, choco: FakeSource
) -> None:
    winget.fail_with = SourceError("winget timed out")
    choco.available = False
    manager.set_view_filter(ViewFilter.ALL_RESULTS)
    manager.search("git")

    assert manager.current_apps == []
    assert manager.is_search_mode


# ----------------------------------------------------------------------
# Filters
# ----------------------------------------------------------------------


def test_all_results_view_merges_installed_and_saved(manager: AppManager) -> None:
    manager.refresh_installed_apps()
    manager.save_app_to_current_list(winget_app("Git", "Git.Git"))
    manager.save_app_to_current_list(choco_app("vlc"))
    manager.set_view_filter(ViewFilter.ALL_RESULTS)

    assert package_ids(manager.current_apps) == [
        "Git.Git",
        "Microsoft.VisualStudioCode",
        "7zip",
        "vlc",
    ]


def test_all_results_dedups_by_package_id_only(manager: AppManager) -> None:
    manager.refresh_installed_apps()
    # Same id as an installed winget app but a different source
    manager.save_app_to_current_list(
        ApplicationRecord(name="git", package_id="Git.Git", source=CHOCOLATEY)
    )
    manager.set_view_filter(ViewFilter.ALL_RESULTS)

    assert [app.source for app in manager.current_apps if app.package_id == "Git.Git"] == [
        WINGET
    ]


def test_source_filter_is_case_insensitive(manager: AppManager) -> None:
    manager.refresh_installed_apps()
    manager.filter_by_source("Chocolatey")
    assert package_ids(manager.current_apps) == ["7zip"]

    manager.filter_by_source(ALL_SOURCES)
    assert len(manager.current_apps) == 3


def test_set_view_filter_exits_search_mode(manager: AppManager) -> None:
    manager.set_view_filter(ViewFilter.ALL_RESULTS)
    manager.search("git")
    manager.set_view_filter(ViewFilter.SAVED_APPS)

    assert not manager.is_search_mode
    assert manager.current_apps == []


def test_unknown_view_filter_rejected(manager: AppManager) -> None:
    with pytest.raises(ValidationError):
        manager.set_view_filter("Everything")


_records = st.lists(
    st.builds(
        ApplicationRecord,
        name=st.text(min_size=1, max_size=8),
        package_id=st.text(min_size=1, max_size=8),
        source=st.sampled_from([WINGET, CHOCOLATEY, "WinGet", "CHOCOLATEY"]),
        is_installed=st.just(True),
    ),
    max_size=12,
)


@settings(max_examples=40, deadline=None)
@given(
    installed=_records,
    source_filter=st.sampled_from([ALL_SOURCES, WINGET, CHOCOLATEY, "Winget"]),
    view=st.sampled_from(list(ViewFilter)),
)
def test_source_filter_holds_for_every_visible_record(
    installed: List[ApplicationRecord], source_filter: str, view: ViewFilter
) -> None:
    mgr = AppManager(
        SqlListStore(),
        {WINGET: FakeSource(WINGET, installed=installed)},
        AppshelfConfig(),
        executor=InlineExecutor(),
    )
    mgr.start()
    mgr.refresh_installed_apps()
    mgr.set_view_filter(view)
    mgr.filter_by_source(source_filter)

    for app in mgr.current_apps:
        assert source_filter == ALL_SOURCES or app.source.lower() == source_filter.lower()
    if source_filter == ALL_SOURCES and view is ViewFilter.INSTALLED_ONLY:
        assert len(mgr.current_apps) == len(installed)


# ----------------------------------------------------------------------
# Lists and membership
# ----------------------------------------------------------------------


def test_create_list_returns_new_list(manager: AppManager) -> None:
    created = manager.create_list("  Dev Tools ", "work")
    assert created.name == "Dev Tools"
    assert [lst.name for lst in manager.lists] == [DEFAULT_LIST_NAME, "Dev Tools"]


def test_create_list_validation(manager: AppManager) -> None:
    with pytest.raises(ValidationError):
        manager.create_list("   ")
    manager.create_list("Tools")
    with pytest.raises(DuplicateListError):
        manager.create_list("Tools")
    assert len(manager.lists) == 2


def test_update_current_list_refreshes_selection(manager: AppManager) -> None:
    manager.update_list(DEFAULT_LIST_ID, "Everyday", "renamed")
    assert manager.current_list is not None
    assert manager.current_list.name == "Everyday"


def test_delete_default_list_fails_and_leaves_lists(manager: AppManager) -> None:
    manager.create_list("Tools")
    before = manager.lists
    with pytest.raises(DefaultListError):
        manager.delete_list(DEFAULT_LIST_ID)
    assert manager.lists == before


def test_delete_current_list_selects_first_remaining(manager: AppManager) -> None:
    tools = manager.create_list("Tools")
    manager.set_current_list(tools)
    manager.delete_list(tools.id)

    assert [lst.name for lst in manager.lists] == [DEFAULT_LIST_NAME]
    assert manager.current_list is not None
    assert manager.current_list.id == DEFAULT_LIST_ID


def test_set_current_list_none_rejected(manager: AppManager) -> None:
    with pytest.raises(ValidationError):
        manager.set_current_list(None)


def test_set_current_list_unknown_id_rejected(manager: AppManager) -> None:
    with pytest.raises(ListNotFoundError):
        manager.set_current_list(AppList(id=999, name="ghost"))

    assert manager.current_list is not None
    assert manager.current_list.id == DEFAULT_LIST_ID
    assert [lst.name for lst in manager.lists] == [DEFAULT_LIST_NAME]


def test_set_current_list_uses_stored_list(manager: AppManager) -> None:
    tools = manager.create_list("Tools", "work stuff")
    manager.set_current_list(AppList(id=tools.id, name="stale name"))

    assert manager.current_list is not None
    assert manager.current_list.name == "Tools"
    assert manager.current_list.description == "work stuff"


def test_reload_does_not_clobber_list_selected_meanwhile(
    store: SqlListStore, winget: FakeSource, choco: FakeSource, config: AppshelfConfig
) -> None:
    mgr = AppManager(
        store, {WINGET: winget, CHOCOLATEY: choco}, config, executor=InlineExecutor()
    )
    mgr.load_lists()
    tools = mgr.create_list("Tools")
    mgr.save_app_to_list(winget_app("Git", "Git.Git"), tools.id)
    assert mgr.current_list is None

    real_lock = mgr._lock
    entries: List[int] = []

    class SelectOnSecondEntry:
        """Selects *tools* from outside just before the second lock entry."""

        def __enter__(self):
            entries.append(1)
            if len(entries) == 2:
                mgr._lock = real_lock
                mgr.set_current_list(tools)
            return real_lock.__enter__()

        def __exit__(self, *exc_info):
            return real_lock.__exit__(*exc_info)

    mgr._lock = SelectOnSecondEntry()
    mgr.load_saved_apps()

    assert len(entries) == 2
    assert mgr.current_list is not None
    assert mgr.current_list.id == tools.id
    assert package_ids(mgr.saved_apps) == ["Git.Git"]


def test_reload_discards_read_of_replaced_list(
    manager: AppManager, store: SqlListStore
) -> None:
    tools = manager.create_list("Tools")
    manager.save_app_to_list(winget_app("Git", "Git.Git"), tools.id)
    real_read = store.get_apps_in_list
    switched: List[int] = []

    def read_then_switch(list_id: int) -> List[ApplicationRecord]:
        apps = real_read(list_id)
        if not switched:
            switched.append(list_id)
            manager.set_current_list(tools)
        return apps

    with patch.object(store, "get_apps_in_list", side_effect=read_then_switch):
        manager.load_saved_apps()

    assert switched == [DEFAULT_LIST_ID]
    assert package_ids(manager.saved_apps) == ["Git.Git"]


def test_switching_lists_restamps_saved_flags(manager: AppManager) -> None:
    manager.refresh_installed_apps()
    tools = manager.create_list("Tools")
    manager.save_app_to_list(winget_app("Git", "Git.Git"), tools.id)
    assert not any(app.is_saved for app in manager.installed_apps)

    manager.set_current_list(tools)
    saved = [app.package_id for app in manager.installed_apps if app.is_saved]
    assert saved == ["Git.Git"]


def test_save_and_remove_update_flags(manager: AppManager) -> None:
    manager.refresh_installed_apps()
    manager.save_app_to_current_list(winget_app("Git", "Git.Git"))

    assert package_ids(manager.saved_apps) == ["Git.Git"]
    assert [app.is_saved for app in manager.current_apps] == [True, False, False]

    manager.remove_app_from_current_list("Git.Git")
    assert manager.saved_apps == []
    assert not any(app.is_saved for app in manager.current_apps)


def test_save_same_app_twice_is_one_row(manager: AppManager) -> None:
    tools = manager.create_list("Tools")
    app = winget_app("Git", "Git.Git")
    manager.save_app_to_current_list(app)
    manager.save_app_to_current_list(app)
    manager.save_app_to_list(app, tools.id)

    assert len(manager.saved_apps) == 1
    assert [lst.name for lst in manager.get_app_lists_containing("Git.Git")] == [
        DEFAULT_LIST_NAME,
        "Tools",
    ]


def test_mark_saved_status_soundness(manager: AppManager) -> None:
    manager.save_app_to_current_list(choco_app("vlc"))
    records = [choco_app("vlc"), choco_app("7zip"), winget_app("VLC", "VideoLAN.VLC")]
    manager.mark_saved_status(records)

    saved_ids = {app.package_id for app in manager.saved_apps}
    for record in records:
        assert record.is_saved == (record.package_id in saved_ids)
        if record.is_saved:
            assert record.list_id == DEFAULT_LIST_ID


def test_accessors_return_copies(manager: AppManager) -> None:
    manager.refresh_installed_apps()
    apps = manager.current_apps
    apps[0].name = "changed"
    apps.clear()

    assert manager.current_apps[0].name == "Git"

    current = manager.current_list
    assert current is not None
    current.name = "changed"
    assert manager.current_list.name == DEFAULT_LIST_NAME


# ----------------------------------------------------------------------
# Install
# ----------------------------------------------------------------------


def test_install_dispatches_to_source_and_refreshes(
    manager: AppManager, winget: FakeSource
) -> None:
    record = winget_app("Mozilla Firefox", "Mozilla.Firefox")
    manager.install_app(record)

    assert winget.install_calls == ["Mozilla.Firefox"]
    assert record.is_installed
    # The inline executor runs the background refresh immediately
    assert winget.list_calls == 1


def test_install_unknown_source(manager: AppManager) -> None:
    with pytest.raises(UnknownSourceError):
        manager.install_app(ApplicationRecord(name="x", package_id="x", source="scoop"))


def test_install_unavailable_source(manager: AppManager, choco: FakeSource) -> None:
    choco.available = False
    with pytest.raises(SourceUnavailableError):
        manager.install_app(choco_app("vlc"))
    assert choco.install_calls == []


def test_install_ignores_disabled_flag(manager: AppManager, choco: FakeSource) -> None:
    manager.set_source_enabled(CHOCOLATEY, False)
    manager.install_app(choco_app("vlc"))
    assert choco.install_calls == ["vlc"]


def test_install_all_stops_at_first_failure(
    manager: AppManager, choco: FakeSource
) -> None:
    for name in ("a-tool", "b-tool", "c-tool"):
        manager.save_app_to_current_list(choco_app(name))
    choco.fail_install.add("b-tool")

    with pytest.raises(InstallError, match="failed to install b-tool"):
        manager.install_all_apps_in_current_list()
    assert choco.install_calls == ["a-tool", "b-tool"]


def test_install_all_in_list_returns_count(manager: AppManager, choco: FakeSource) -> None:
    manager.save_app_to_current_list(choco_app("vlc"))
    manager.save_app_to_current_list(choco_app("7zip"))
    assert manager.install_all_apps_in_list(DEFAULT_LIST_ID) == 2
    assert choco.install_calls == ["7zip", "vlc"]


# ----------------------------------------------------------------------
# Sources and observers
# ----------------------------------------------------------------------


def test_cannot_disable_last_source(manager: AppManager) -> None:
    manager.set_source_enabled(WINGET, False)
    with pytest.raises(LastSourceError):
        manager.set_source_enabled(CHOCOLATEY, False)
    assert manager.config.enabled_sources() == [CHOCOLATEY]


def test_failing_observer_does_not_block_others(manager: AppManager) -> None:
    calls: List[str] = []

    def broken() -> None:
        raise RuntimeError("boom")

    manager.add_observer(broken)
    manager.add_observer(lambda: calls.append("ok"))
    manager.filter_by_source(WINGET)

    assert calls == ["ok"]


def test_removed_observer_is_not_called(manager: AppManager) -> None:
    calls: List[str] = []

    def observer() -> None:
        calls.append("called")

    manager.add_observer(observer)
    manager.remove_observer(observer)
    manager.clear_search()
    assert calls == []


def test_observer_may_call_back_into_manager(manager: AppManager) -> None:
    seen: List[int] = []
    manager.add_observer(lambda: seen.append(len(manager.current_apps)))
    manager.refresh_installed_apps()
    assert seen[-1] == 3


# ----------------------------------------------------------------------
# CSV export / import
# ----------------------------------------------------------------------


def test_export_then_import_restores_list(manager: AppManager) -> None:
    tools = manager.create_list("Dev Tools")
    manager.save_app_to_list(winget_app("Git", "Git.Git", "2.44.0"), tools.id)
    manager.save_app_to_list(choco_app("7zip", "23.1.0"), tools.id)

    path = manager.export_list_to_csv(tools.id)
    assert path.name.startswith("Dev_Tools_")
    manager.delete_list(tools.id)

    target, count = manager.import_list_from_csv(path)
    assert target.name == "Dev Tools"
    assert target.description == f"Imported from {path.stem}"
    assert count == 2

    current = manager.current_list
    assert current is not None
    manager.set_current_list(target)
    restored = {(app.package_id, app.version, app.source) for app in manager.saved_apps}
    assert restored == {("Git.Git", "2.44.0", WINGET), ("7zip", "23.1.0", CHOCOLATEY)}


def test_import_skips_existing_rows(manager: AppManager, tmp_path: Path) -> None:
    manager.save_app_to_current_list(winget_app("Git", "Git.Git", "2.40.0"))
    csv_path = tmp_path / "default.csv"
    csv_path.write_text(
        "Name,Package ID,Version,Source,Description\n"
        "Git,Git.Git,2.44.0,winget,\n"
        "7zip,7zip,23.1.0,chocolatey,\n"
    )

    target, count = manager.import_list_from_csv(csv_path)
    assert target.id == DEFAULT_LIST_ID
    assert count == 1
    versions = {app.package_id: app.version for app in manager.saved_apps}
    assert versions == {"Git.Git": "2.40.0", "7zip": "23.1.0"}


def test_import_many_captures_per_file_errors(
    manager: AppManager, tmp_path: Path
) -> None:
    good = tmp_path / "Games_2024-05-01_10-30-00.csv"
    good.write_text("Name,Package ID,Version,Source,Description\nSteam,Valve.Steam,,winget,\n")
    empty = tmp_path / "Empty.csv"
    empty.write_text("Name,Package ID,Version,Source,Description\n")
    missing = tmp_path / "missing.csv"

    results = manager.import_lists_from_csv([good, empty, missing])

    assert [result.ok for result in results] == [True, False, False]
    assert results[0].list_name == "Games"
    assert results[0].imported_count == 1
    assert isinstance(results[1].error, ImportFormatError)
    assert isinstance(results[2].error, OSError)
    assert "Games" in [lst.name for lst in manager.lists]
    assert "Empty" not in [lst.name for lst in manager.lists]


def test_export_all_lists(manager: AppManager, config: AppshelfConfig) -> None:
    manager.create_list("Tools")
    paths = manager.export_all_lists_to_csv()
    assert len(paths) == 2
    assert all(path.parent == config.exports_dir for path in paths)


def test_export_current_list_requires_selection(manager: AppManager) -> None:
    path = manager.export_current_list_to_csv()
    assert path.name.startswith("Default_")


# ----------------------------------------------------------------------
# Threading
# ----------------------------------------------------------------------


def test_private_pool_handles_concurrent_callers(
    store: SqlListStore, winget: FakeSource, choco: FakeSource, config: AppshelfConfig
) -> None:
    mgr = AppManager(store, {WINGET: winget, CHOCOLATEY: choco}, config)
    notified = threading.Event()
    mgr.add_observer(notified.set)
    mgr.start()
    mgr.set_view_filter(ViewFilter.ALL_RESULTS)

    errors: List[BaseException] = []

    def worker(index: int) -> None:
        try:
            for _ in range(5):
                if index % 2:
                    mgr.search("git")
                else:
                    mgr.refresh_installed_apps()
        except BaseException as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert not any(thread.is_alive() for thread in threads)
    assert errors == []
    assert notified.wait(timeout=5)

    calls_before = winget.list_calls
    mgr.install_app(winget_app("Mozilla Firefox", "Mozilla.Firefox", "125.0"))
    mgr.close()

    assert winget.install_calls == ["Mozilla.Firefox"]
    assert winget.list_calls > calls_before
    assert not mgr.is_loading
    assert package_ids(mgr.installed_apps) == [
        "Git.Git",
        "Microsoft.VisualStudioCode",
        "7zip",
    ]
