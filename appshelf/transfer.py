"""
CSV export and import of saved-app lists.

One file per list. Exported file names carry the list name and a timestamp;
on import the list name is recovered from the file name.
"""

import csv
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from appshelf.errors import ImportFormatError
from appshelf.models import AppList, ApplicationRecord

logger = logging.getLogger("appshelf.transfer")

CSV_HEADERS = [
    "Name",
    "Package ID",
    "Version",
    "Source",
    "Description",
    "Is Installed",
    "Is Saved",
    "List ID",
]
MIN_COLUMNS = 5
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
IMPORTED_LIST_NAME = "Imported List"

_TIMESTAMP_SUFFIX = re.compile(r"_\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}$")
_UNSAFE_FILENAME_CHARS = re.compile(r"[ /\\]")


def sanitize_list_name(name: str) -> str:
    """Replace spaces and path separators so a list name is a safe file stem."""
    return _UNSAFE_FILENAME_CHARS.sub("_", name)


def export_filename(list_name: str, when: Optional[datetime] = None) -> str:
    stamp = (when or datetime.now()).strftime(TIMESTAMP_FORMAT)
    return f"{sanitize_list_name(list_name)}_{stamp}.csv"


def list_name_from_filename(path: Path) -> str:
    """
    Recover a list name from an exported file name.

    ``My_Tools_2024-05-01_10-30-00.csv`` becomes ``My Tools``.
    """
    stem = _TIMESTAMP_SUFFIX.sub("", Path(path).stem)
    name = stem.replace("_", " ").strip()
    return name or IMPORTED_LIST_NAME


def _bool(value: bool) -> str:
    return "true" if value else "false"


def export_list(
    exports_dir: Path,
    app_list: AppList,
    apps: List[ApplicationRecord],
    when: Optional[datetime] = None,
) -> Path:
    """
    Write *apps* to a new CSV file in *exports_dir*.

    Args:
        exports_dir: Directory to write into; created if missing
        app_list: The list being exported, used for the file name
        apps: Saved apps of the list
        when: Timestamp for the file name, defaults to now

    Returns:
        The path of the written file
    """
    exports_dir.mkdir(parents=True, exist_ok=True)
    file_path = exports_dir / export_filename(app_list.name, when)

    with open(file_path, "w", newline="", encoding="utf-8") as csv_file:
        writer = csv.writer(csv_file)
        writer.writerow(CSV_HEADERS)
        for app in apps:
            writer.writerow(
                [
                    app.name,
                    app.package_id,
                    app.version,
                    app.source,
                    app.description,
                    _bool(app.is_installed),
                    _bool(app.is_saved),
                    "" if app.list_id is None else str(app.list_id),
                ]
            )

    logger.info(f"Exported {len(apps)} apps from list {app_list.name!r} to {file_path}")
    return file_path


def read_list_csv(path: Path) -> Tuple[List[ApplicationRecord], int]:
    """
    Read app rows from an exported CSV file.

    Rows with fewer than five fields or an empty name or package id are
    skipped.

    Returns:
        Tuple of (records, skipped_row_count)

    Raises:
        ImportFormatError: If the header is missing or too narrow, or there
            are no data rows
        OSError: If the file cannot be read
    """
    with open(path, "r", newline="", encoding="utf-8-sig") as csv_file:
        reader = csv.reader(csv_file)
        header = next(reader, None)
        if header is None:
            raise ImportFormatError(f"{path}: failed to read CSV header")
        if len(header) < MIN_COLUMNS:
            raise ImportFormatError(
                f"invalid CSV format: expected at least {MIN_COLUMNS} columns, "
                f"got {len(header)}"
            )
        rows = list(reader)

    if not rows:
        raise ImportFormatError("CSV file is empty")

    apps: List[ApplicationRecord] = []
    skipped = 0
    for row in rows:
        if len(row) < MIN_COLUMNS:
            skipped += 1
            continue
        app = ApplicationRecord(
            name=row[0].strip(),
            package_id=row[1].strip(),
            version=row[2].strip(),
            source=row[3].strip(),
            description=row[4].strip(),
            is_saved=True,
        )
        if not app.name or not app.package_id:
            skipped += 1
            continue
        apps.append(app)

    if skipped:
        logger.debug(f"Skipped {skipped} incomplete rows in {path}")
    return apps, skipped
