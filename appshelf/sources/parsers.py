"""
Parsers for package manager output.

Each function turns the raw text printed by a package manager into
``ApplicationRecord`` objects. Malformed lines are dropped rather than failing
the whole batch; the input order of the remaining lines is preserved.
"""

import re
from typing import List

from appshelf.models import CHOCOLATEY, WINGET, ApplicationRecord

# winget aligns columns with padding; single spaces belong to the value
_COLUMN_SPLIT = re.compile(r"\s{2,}")
_SEPARATOR = re.compile(r"-[-\s]*")


def _is_separator(line: str) -> bool:
    return "--" in line and _SEPARATOR.fullmatch(line) is not None


def parse_winget_table(output: str) -> List[ApplicationRecord]:
    """
    Parse the column-aligned table printed by ``winget search`` / ``winget list``.

    Everything up to the dashed separator line is header (and progress spinner
    residue). Columns are name, package id and, when present, version. The
    output may hold more than one table, e.g. ``winget list`` appends packages
    with unknown upgrade state; every line directly above a separator is a
    header and never a record.
    """
    apps: List[ApplicationRecord] = []
    headers = set()
    previous = ""
    previous_appended = False
    data_started = False

    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        if _is_separator(line):
            if previous:
                headers.add(previous)
                if previous_appended:
                    apps.pop()
            previous_appended = False
            data_started = True
            continue

        previous = line
        previous_appended = False
        if not data_started or line in headers:
            continue

        parts = _COLUMN_SPLIT.split(line)
        if len(parts) < 2:
            continue

        apps.append(
            ApplicationRecord(
                name=parts[0].strip(),
                package_id=parts[1].strip(),
                version=parts[2].strip() if len(parts) >= 3 else "",
                source=WINGET,
            )
        )
        previous_appended = True

    return apps


def parse_winget_list(output: str) -> List[ApplicationRecord]:
    """Parse ``winget list`` output; every record is installed."""
    apps = parse_winget_table(output)
    for app in apps:
        app.is_installed = True
    return apps


def parse_choco_lines(output: str) -> List[ApplicationRecord]:
    """
    Parse ``choco ... --limit-output`` lines of the form ``name|version[|...]``.

    Chocolatey package names double as package ids.
    """
    apps: List[ApplicationRecord] = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        parts = line.split("|")
        if len(parts) < 2:
            continue

        name = parts[0].strip()
        apps.append(
            ApplicationRecord(
                name=name,
                package_id=name,
                version=parts[1].strip(),
                source=CHOCOLATEY,
            )
        )

    return apps


def parse_choco_list(output: str) -> List[ApplicationRecord]:
    """Parse ``choco list`` output; every record is installed."""
    apps = parse_choco_lines(output)
    for app in apps:
        app.is_installed = True
    return apps
