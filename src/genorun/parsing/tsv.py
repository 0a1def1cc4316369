"""Tab-separated table reading shared by the output parsers.

The analysis tools write plain TSV: an optional block of ``#`` comment
lines, a header row, then data rows. Rows may be shorter than the header
when trailing optional columns are empty.
"""

from __future__ import annotations

import math
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

# Values the tools write for "no value", compared case-insensitively
MISSING_VALUES = frozenset({"", "na", "n/a", "nan", "none"})


class RowError(ValueError):
    """A single data row violates the table's column contract."""


@dataclass
class TsvTable:
    """A parsed TSV file: header plus raw data rows with line numbers."""

    path: Path
    header: list[str]
    rows: list[tuple[int, list[str]]] = field(default_factory=list)

    def column_index(self, name: str) -> int | None:
        try:
            return self.header.index(name)
        except ValueError:
            return None

    def __len__(self) -> int:
        return len(self.rows)


def _iter_lines(path: Path) -> Iterator[tuple[int, list[str]]]:
    with open(path, encoding="utf-8", errors="replace") as f:
        for line_num, line in enumerate(f, start=1):
            line = line.rstrip("\r\n")
            if not line.strip() or line.startswith("#"):
                continue
            yield line_num, [v.strip() for v in line.split("\t")]


def read_tsv(path: Path) -> TsvTable:
    """Read ``path`` into a TsvTable. The first non-comment line is the header."""
    lines = _iter_lines(path)
    first = next(lines, None)
    if first is None:
        return TsvTable(path=path, header=[])
    table = TsvTable(path=path, header=first[1])
    table.rows.extend(lines)
    return table


def cell(values: list[str], index: int) -> str | None:
    """Value at ``index`` or None when the column is absent or a placeholder."""
    if index >= len(values):
        return None
    value = values[index]
    return None if value.lower() in MISSING_VALUES else value


def required_cell(values: list[str], index: int, name: str) -> str:
    value = cell(values, index)
    if value is None:
        raise RowError(f"missing required column '{name}'")
    return value


def to_int(value: str, name: str) -> int:
    try:
        return int(value)
    except ValueError:
        pass
    # Some tool versions write integral columns as "1234.0"
    try:
        as_float = float(value)
    except ValueError:
        raise RowError(f"column '{name}' is not an integer: {value!r}") from None
    if not as_float.is_integer():
        raise RowError(f"column '{name}' is not an integer: {value!r}")
    return int(as_float)


def parse_int(value: str | None, name: str) -> int | None:
    return None if value is None else to_int(value, name)


def required_int(values: list[str], index: int, name: str) -> int:
    return to_int(required_cell(values, index, name), name)


def parse_float(value: str | None, name: str) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except ValueError:
        raise RowError(f"column '{name}' is not a number: {value!r}") from None
    if not math.isfinite(number):
        raise RowError(f"column '{name}' is not a finite number: {value!r}")
    return number


def parse_bool(value: str | None) -> bool:
    return value is not None and value.lower() in ("true", "1", "yes")


__all__ = [
    "MISSING_VALUES",
    "RowError",
    "TsvTable",
    "cell",
    "parse_bool",
    "parse_float",
    "parse_int",
    "read_tsv",
    "required_cell",
    "required_int",
    "to_int",
]
