"""
Application state manager for AppShelf.

``AppManager`` owns everything a front end displays: the installed apps, the
last search results, the apps saved to the selected list, the list
collection and the filter selections. It queries the package sources, keeps
list membership in step with the list store and tells registered observers
whenever the state changes.

Locking rules:

* one lock guards every shared field; it is held only for short
  read-modify-write sections, never while a package manager or the database
  is being called;
* observers are never notified while the lock is held, so an observer may
  call straight back into the manager;
* every read accessor returns copies, never the internal containers.
"""

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterable, List, Mapping, Optional, Tuple, Union

from appshelf.config import AppshelfConfig
from appshelf.errors import (
    AppshelfError,
    DefaultListError,
    InstallError,
    SourceError,
    SourceUnavailableError,
    StoreError,
    UnknownSourceError,
    ValidationError,
)
from appshelf.models import (
    ALL_SOURCES,
    DEFAULT_LIST_ID,
    AppList,
    ApplicationRecord,
    ImportResult,
    ViewFilter,
)
from appshelf.sources import BaseSource
from appshelf.store import ListGateway
from appshelf.transfer import export_list, list_name_from_filename, read_list_csv

logger = logging.getLogger("appshelf.manager")

StateObserver = Callable[[], None]


class AppManager:
    """Aggregates package sources and saved lists into one observable state."""

    def __init__(
        self,
        store: ListGateway,
        sources: Mapping[str, BaseSource],
        config: Optional[AppshelfConfig] = None,
        executor: Optional[Executor] = None,
    ):
        """
        Initialize the manager.

        Args:
            store: Persistence for lists and list membership
            sources: Package sources keyed by source name, in search order
            config: Settings holding the source toggles and export directory
            executor: Runs observer callbacks and background refreshes. A
                private thread pool is created when omitted.
        """
        self._store = store
        self._sources = dict(sources)
        self.config = config or AppshelfConfig()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="appshelf"
        )

        self._lock = threading.Lock()
        self._observers_lock = threading.Lock()
        self._observers: List[StateObserver] = []

        self._all_apps: List[ApplicationRecord] = []
        self._installed_apps: List[ApplicationRecord] = []
        self._saved_apps: List[ApplicationRecord] = []
        self._current_apps: List[ApplicationRecord] = []
        self._all_lists: List[AppList] = []
        self._current_list: Optional[AppList] = None
        self._source_filter = ALL_SOURCES
        self._view_filter = ViewFilter.INSTALLED_ONLY
        self._search_query = ""
        self._is_search_mode = False
        self._is_loading = False

    def __enter__(self) -> "AppManager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self, wait: bool = True) -> None:
        """Shut down the private executor, waiting for pending work by default."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def start(self) -> None:
        """Load the lists and select the default list (or the first by name)."""
        self.load_lists()
        lists = self.lists
        target = next((lst for lst in lists if lst.id == DEFAULT_LIST_ID), None)
        if target is None and lists:
            target = lists[0]
        if target is not None:
            self.set_current_list(target)
        else:
            self._notify()

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def add_observer(self, observer: StateObserver) -> None:
        if observer is None:
            return
        with self._observers_lock:
            self._observers.append(observer)

    def remove_observer(self, observer: StateObserver) -> None:
        with self._observers_lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def _notify(self) -> None:
        with self._observers_lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                self._executor.submit(self._run_observer, observer)
            except RuntimeError:
                logger.debug("Executor is shut down; dropping notification")
                return

    @staticmethod
    def _run_observer(observer: StateObserver) -> None:
        try:
            observer()
        except Exception:
            logger.exception(f"State observer {observer!r} failed")

    def _run_in_background(self, func: Callable[[], None]) -> None:
        def task() -> None:
            try:
                func()
            except Exception:
                logger.exception("Background task failed")

        try:
            self._executor.submit(task)
        except RuntimeError:
            logger.debug("Executor is shut down; skipping background task")

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def current_apps(self) -> List[ApplicationRecord]:
        """The filtered view a front end renders."""
        with self._lock:
            return [replace(app) for app in self._current_apps]

    @property
    def all_apps(self) -> List[ApplicationRecord]:
        with self._lock:
            return [replace(app) for app in self._all_apps]

    @property
    def installed_apps(self) -> List[ApplicationRecord]:
        with self._lock:
            return [replace(app) for app in self._installed_apps]

    @property
    def saved_apps(self) -> List[ApplicationRecord]:
        """Apps saved to the current list."""
        with self._lock:
            return [replace(app) for app in self._saved_apps]

    @property
    def lists(self) -> List[AppList]:
        with self._lock:
            return [replace(lst) for lst in self._all_lists]

    @property
    def current_list(self) -> Optional[AppList]:
        with self._lock:
            if self._current_list is None:
                return None
            return replace(self._current_list)

    @property
    def source_filter(self) -> str:
        with self._lock:
            return self._source_filter

    @property
    def view_filter(self) -> ViewFilter:
        with self._lock:
            return self._view_filter

    @property
    def search_query(self) -> str:
        with self._lock:
            return self._search_query

    @property
    def is_search_mode(self) -> bool:
        with self._lock:
            return self._is_search_mode

    @property
    def is_loading(self) -> bool:
        with self._lock:
            return self._is_loading

    def _set_loading(self, loading: bool) -> None:
        with self._lock:
            self._is_loading = loading
        self._notify()

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def _enabled_sources(self) -> List[BaseSource]:
        # Caller holds the lock
        return [
            source
            for name, source in self._sources.items()
            if self.config.is_source_enabled(name)
        ]

    def _gather(
        self,
        sources: List[BaseSource],
        fetch: Callable[[BaseSource], List[ApplicationRecord]],
        action: str,
    ) -> List[ApplicationRecord]:
        """Query *sources* in parallel and concatenate results in source order."""
        if not sources:
            return []
        with ThreadPoolExecutor(
            max_workers=len(sources), thread_name_prefix="appshelf-source"
        ) as pool:
            futures = [
                pool.submit(self._fetch_from, source, fetch, action)
                for source in sources
            ]
            apps: List[ApplicationRecord] = []
            for future in futures:
                apps.extend(future.result())
        return apps

    @staticmethod
    def _fetch_from(
        source: BaseSource,
        fetch: Callable[[BaseSource], List[ApplicationRecord]],
        action: str,
    ) -> List[ApplicationRecord]:
        if not source.is_available():
            logger.debug(f"{source.name} is not available; skipping {action}")
            return []
        try:
            return fetch(source)
        except SourceError as e:
            logger.warning(f"{source.name} {action} failed: {e}")
            return []

    def set_source_enabled(self, name: str, enabled: bool) -> None:
        """
        Enable or disable a package source.

        Raises:
            LastSourceError: If this would disable the last enabled source
            ValidationError: If *name* is not a known source
        """
        with self._lock:
            self.config.set_source_enabled(name, enabled)
        logger.info(f"{name} {'enabled' if enabled else 'disabled'}")
        self._notify()

    # ------------------------------------------------------------------
    # Search, refresh, install
    # ------------------------------------------------------------------

    def search(self, query: str) -> None:
        """
        Search for applications and show the results.

        In the "Saved Apps" and "Installed Only" views the search runs over the
        apps already loaded; in "All Results" every enabled source is queried.
        A blank query leaves search mode instead.
        """
        if not query.strip():
            self.clear_search()
            return

        self._set_loading(True)
        try:
            results: Optional[List[ApplicationRecord]] = None
            with self._lock:
                self._search_query = query
                self._is_search_mode = True
                if self._view_filter is ViewFilter.SAVED_APPS:
                    results = [app for app in self._saved_apps if app.matches(query)]
                elif self._view_filter is ViewFilter.INSTALLED_ONLY:
                    results = [
                        app for app in self._installed_apps if app.matches(query)
                    ]
                else:
                    sources = self._enabled_sources()

            if results is None:
                logger.info(f"Searching for {query!r}...")
                results = self._gather(sources, lambda s: s.search(query), "search")
                logger.info(f"Found {len(results)} results for {query!r}")

            with self._lock:
                self._mark_saved_status(results)
                self._all_apps = results
                self._is_loading = False
                self._apply_all_filters()
            self._notify()
        finally:
            self._set_loading(False)

    def clear_search(self) -> None:
        """Leave search mode and show the current view again."""
        with self._lock:
            self._is_search_mode = False
            self._search_query = ""
            self._apply_all_filters()
        self._notify()

    def refresh_installed_apps(self) -> None:
        """Reload installed apps from every enabled source and leave search mode."""
        self._set_loading(True)
        try:
            with self._lock:
                sources = self._enabled_sources()
            apps = self._gather(sources, lambda s: s.get_installed_apps(), "list")
            logger.info(f"Found {len(apps)} installed applications")

            with self._lock:
                self._is_search_mode = False
                self._mark_saved_status(apps)
                self._installed_apps = apps
                self._all_apps = list(apps)
                self._is_loading = False
                self._apply_all_filters()
            self._notify()
        finally:
            self._set_loading(False)

    def install_app(self, app: ApplicationRecord) -> None:
        """
        Install *app* with the package manager it came from.

        On success the installed apps are refreshed in the background; this
        call does not wait for that.

        Raises:
            UnknownSourceError: If no source is registered for ``app.source``
            SourceUnavailableError: If that source's binary does not respond
            SourceError: If the installation fails
        """
        source = self._sources.get(app.source)
        if source is None:
            raise UnknownSourceError(f"unknown package source: {app.source}")
        if not source.is_available():
            raise SourceUnavailableError(f"{app.source} is not available")

        source.install(app.package_id)

        app.is_installed = True
        with self._lock:
            for held in self._all_apps + self._current_apps:
                if held.package_id == app.package_id and held.source == app.source:
                    held.is_installed = True
        self._notify()
        self._run_in_background(self.refresh_installed_apps)

    def install_all_apps_in_list(self, list_id: int) -> int:
        """
        Install every app saved to a list, in name order.

        Returns:
            Number of apps installed

        Raises:
            InstallError: At the first app that fails to install
        """
        apps = self._store.get_apps_in_list(list_id)
        for app in apps:
            try:
                self.install_app(app)
            except SourceError as e:
                raise InstallError(f"failed to install {app.name}: {e}") from e
        return len(apps)

    def install_all_apps_in_current_list(self) -> int:
        return self.install_all_apps_in_list(self._require_current_list().id)

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def set_view_filter(self, view: Union[ViewFilter, str]) -> None:
        """Switch the base population; leaves search mode."""
        try:
            view = ViewFilter(view)
        except ValueError as e:
            raise ValidationError(f"unknown view filter: {view}") from e
        with self._lock:
            self._is_search_mode = False
            self._view_filter = view
            self._apply_all_filters()
        self._notify()

    def filter_by_source(self, source: str) -> None:
        """Narrow the view to one source, or ``ALL_SOURCES``."""
        with self._lock:
            self._source_filter = source
            self._apply_all_filters()
        self._notify()

    def _apply_all_filters(self) -> None:
        """Recompute ``current_apps``. Caller holds the lock and notifies afterwards."""
        if self._is_search_mode:
            base = list(self._all_apps)
        elif self._view_filter is ViewFilter.INSTALLED_ONLY:
            base = list(self._installed_apps)
        elif self._view_filter is ViewFilter.SAVED_APPS:
            base = list(self._saved_apps)
        else:
            # Installed apps win over saved ones; matched on package id alone,
            # so a saved chocolatey app hides behind an installed winget app
            # with the same id.
            installed_ids = {app.package_id for app in self._installed_apps}
            base = list(self._installed_apps) + [
                app for app in self._saved_apps if app.package_id not in installed_ids
            ]

        if self._source_filter == ALL_SOURCES:
            self._current_apps = base
        else:
            wanted = self._source_filter.lower()
            self._current_apps = [app for app in base if app.source.lower() == wanted]

    # ------------------------------------------------------------------
    # Saved status
    # ------------------------------------------------------------------

    def mark_saved_status(self, apps: Iterable[ApplicationRecord]) -> None:
        """Stamp ``is_saved``/``list_id`` on *apps* from the current list."""
        with self._lock:
            self._mark_saved_status(apps)

    def _mark_saved_status(self, apps: Iterable[ApplicationRecord]) -> None:
        # Caller holds the lock
        if self._current_list is None:
            return
        saved_ids = {app.package_id for app in self._saved_apps}
        list_id = self._current_list.id
        for app in apps:
            app.is_saved = app.package_id in saved_ids
            if app.is_saved:
                app.list_id = list_id

    def _restamp(self) -> None:
        # Caller holds the lock
        self._mark_saved_status(self._all_apps)
        self._mark_saved_status(self._installed_apps)
        self._mark_saved_status(self._current_apps)
        self._apply_all_filters()

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    def _require_current_list(self) -> AppList:
        current = self.current_list
        if current is None:
            raise ValidationError("no list selected")
        return current

    @staticmethod
    def _validate_name(name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("list name cannot be empty")
        return name

    def load_lists(self) -> None:
        """Reload the list collection from the store."""
        lists = self._store.get_lists()
        with self._lock:
            self._all_lists = lists

    def load_saved_apps(self) -> None:
        """Reload the current list's apps from the store and restamp the view."""
        with self._lock:
            current = self._current_list
        read_id = current.id if current is not None else None
        saved = self._store.get_apps_in_list(read_id) if read_id is not None else []
        with self._lock:
            now_id = self._current_list.id if self._current_list is not None else None
            if now_id != read_id:
                # Another thread switched lists while we were reading
                return
            self._saved_apps = saved
            self._restamp()

    def set_current_list(self, app_list: Optional[AppList]) -> None:
        """
        Select a list; its saved apps are reloaded and the view restamped.

        Raises:
            ValidationError: If *app_list* is None
            ListNotFoundError: If the list no longer exists in the store
        """
        if app_list is None:
            raise ValidationError("list cannot be None")
        selected = self._store.get_list_by_id(app_list.id)
        lists = self._store.get_lists()
        saved = self._store.get_apps_in_list(selected.id)
        with self._lock:
            self._all_lists = lists
            self._current_list = selected
            self._saved_apps = saved
            self._restamp()
        logger.debug(f"Selected list {selected.name!r}")
        self._notify()

    def get_list(self, list_id: int) -> AppList:
        return self._store.get_list_by_id(list_id)

    def create_list(self, name: str, description: str = "") -> AppList:
        """
        Create a list and return it.

        Raises:
            ValidationError: If *name* is blank
            DuplicateListError: If the name is taken
        """
        name = self._validate_name(name)
        list_id = self._store.create_list(name, description)
        self.load_lists()
        self._notify()
        for lst in self.lists:
            if lst.id == list_id:
                logger.info(f"Created list {name!r}")
                return lst
        raise StoreError("failed to find newly created list")

    def update_list(self, list_id: int, name: str, description: str = "") -> None:
        name = self._validate_name(name)
        self._store.update_list(list_id, name, description)
        lists = self._store.get_lists()
        with self._lock:
            self._all_lists = lists
            if self._current_list is not None and self._current_list.id == list_id:
                for lst in lists:
                    if lst.id == list_id:
                        self._current_list = replace(lst)
                        break
        self._notify()

    def delete_list(self, list_id: int) -> None:
        """
        Delete a list. If it was selected, the first remaining list by name is
        selected instead, or the selection is cleared.

        Raises:
            DefaultListError: For the default list
        """
        if list_id == DEFAULT_LIST_ID:
            raise DefaultListError("cannot delete the default list")
        self._store.delete_list(list_id)
        lists = self._store.get_lists()
        with self._lock:
            self._all_lists = lists
            was_current = (
                self._current_list is not None and self._current_list.id == list_id
            )
            if was_current and not lists:
                self._current_list = None
                self._saved_apps = []
                self._apply_all_filters()
        logger.info(f"Deleted list {list_id}")
        if was_current and lists:
            self.set_current_list(lists[0])
        else:
            self._notify()

    def get_app_lists_containing(self, package_id: str) -> List[AppList]:
        return self._store.get_app_lists_containing(package_id)

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def _is_current(self, list_id: int) -> bool:
        with self._lock:
            return self._current_list is not None and self._current_list.id == list_id

    def save_app_to_list(self, app: ApplicationRecord, list_id: int) -> None:
        """Save *app* to a list, replacing any earlier snapshot of it there."""
        self._store.save_app_to_list(list_id, app)
        if self._is_current(list_id):
            self.load_saved_apps()
        self._notify()

    def save_app_to_current_list(self, app: ApplicationRecord) -> None:
        self.save_app_to_list(app, self._require_current_list().id)

    def remove_app_from_list(self, package_id: str, list_id: int) -> None:
        self._store.remove_app_from_list(list_id, package_id)
        if self._is_current(list_id):
            self.load_saved_apps()
        self._notify()

    def remove_app_from_current_list(self, package_id: str) -> None:
        self.remove_app_from_list(package_id, self._require_current_list().id)

    # ------------------------------------------------------------------
    # CSV export / import
    # ------------------------------------------------------------------

    def export_list_to_csv(self, list_id: int) -> Path:
        """Export one list to a timestamped CSV file in the exports directory."""
        app_list = self._store.get_list_by_id(list_id)
        apps = self._store.get_apps_in_list(list_id)
        return export_list(self.config.exports_dir, app_list, apps)

    def export_current_list_to_csv(self) -> Path:
        return self.export_list_to_csv(self._require_current_list().id)

    def export_all_lists_to_csv(self) -> List[Path]:
        paths: List[Path] = []
        for lst in self.lists:
            try:
                paths.append(self.export_list_to_csv(lst.id))
            except (AppshelfError, OSError) as e:
                raise AppshelfError(f"failed to export list {lst.name!r}: {e}") from e
        return paths

    def import_list_from_csv(self, path: Union[str, Path]) -> Tuple[AppList, int]:
        """
        Import one CSV file into the list named after the file.

        An existing list with that name (case-insensitive) is reused, otherwise
        a new one is created. Packages already in the list are left alone.

        Returns:
            Tuple of (target list, number of newly saved apps)
        """
        path = Path(path)
        apps, _ = read_list_csv(path)
        list_name = list_name_from_filename(path)

        target = next(
            (
                lst
                for lst in self._store.get_lists()
                if lst.name.lower() == list_name.lower()
            ),
            None,
        )
        if target is None:
            target = self.create_list(list_name, f"Imported from {path.stem}")

        imported = 0
        for app in apps:
            if self._store.is_app_in_list(target.id, app.package_id):
                continue
            self._store.save_app_to_list(target.id, app)
            imported += 1

        logger.info(f"Imported {imported} apps into list {target.name!r} from {path}")
        if self._is_current(target.id):
            self.load_saved_apps()
        self._notify()
        return target, imported

    def import_lists_from_csv(self, paths: Iterable[Union[str, Path]]) -> List[ImportResult]:
        """Import several CSV files; a failing file does not stop the others."""
        results: List[ImportResult] = []
        for path in paths:
            result = ImportResult(path=str(path))
            try:
                target, count = self.import_list_from_csv(path)
                result.list_name = target.name
                result.imported_count = count
            except (AppshelfError, OSError, UnicodeDecodeError) as e:
                logger.warning(f"Failed to import {path}: {e}")
                result.error = e
            results.append(result)

        self.load_lists()
        self._notify()
        return results
