"""
rsync progress line decoder.

rsync reports progress differently per phase and flag set:

* ``--progress`` transfer lines carry a ``45%`` token
* ``to-chk=R/T`` (``to-check=`` in rsync 3.1+) counts the files still to check
* file list construction prints ``2,000 files...``

The first pattern that matches wins. Anything else yields ``None``.
"""

import math
import re
from typing import Optional

_TO_CHECK_PATTERN = re.compile(r"to-(?:chk|check)=([0-9]+)/([0-9]+)")
_FILE_COUNT_PATTERN = re.compile(r"([0-9,]+) files")

# File list building never reports more than this
FILE_LIST_PROGRESS_CAP = 0.05
FILE_LIST_FULL_COUNT = 10000.0


def parse_progress(line: str) -> Optional[float]:
    """Return the progress fraction a line reports, or None."""
    if not line:
        return None

    percent = _parse_percent(line)
    if percent is not None:
        return percent

    to_check = _parse_to_check(line)
    if to_check is not None:
        return to_check

    return _parse_file_list(line)


def _parse_percent(line: str) -> Optional[float]:
    if "%" not in line:
        return None

    for token in line.split():
        if not token.endswith("%"):
            continue
        try:
            percent = float(token[:-1])
        except ValueError:
            continue
        if math.isfinite(percent):
            return percent / 100.0
    return None


def _parse_to_check(line: str) -> Optional[float]:
    match = _TO_CHECK_PATTERN.search(line)
    if not match:
        return None

    remaining = float(match.group(1))
    total = float(match.group(2))
    if total <= 0:
        return None
    return max(0.0, (total - remaining) / total)


def _parse_file_list(line: str) -> Optional[float]:
    if "files..." not in line:
        return None

    match = _FILE_COUNT_PATTERN.search(line)
    if not match:
        return None

    digits = match.group(1).replace(",", "")
    if not digits:
        return None

    file_count = float(digits)
    if file_count <= 0:
        return None
    return min(FILE_LIST_PROGRESS_CAP, file_count / FILE_LIST_FULL_COUNT * FILE_LIST_PROGRESS_CAP)
