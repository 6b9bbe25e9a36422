"""
Tolerant CSV parsing for payment uploads.

The reader is lenient about row shape: data lines with more cells than
the header are cut down to the header width, and missing trailing cells
become empty strings. A line with broken quoting keeps its raw cell text
instead of failing the file. Only structurally unusable input (empty
payload, no header, no data lines) is fatal.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Tuple

import pandas as pd
from pandas.errors import EmptyDataError, ParserError

logger = logging.getLogger(__name__)

CANDIDATE_DELIMITERS = (",", ";", "\t", "|")
DEFAULT_DELIMITER = ","
BOM = "\ufeff"


class CsvParseError(ValueError):
    """Raised when an upload cannot be parsed into rows at all."""


@dataclass
class ParsedCsv:
    headers: List[str]
    delimiter: str
    rows: List[Dict[str, str]] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    def iter_rows(self) -> Iterator[Tuple[int, Dict[str, str]]]:
        """Yield ``(row_number, fields)`` with 1-based row numbers."""
        for index, fields in enumerate(self.rows, start=1):
            yield index, fields


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_header(name: object) -> str:
    return str(name).strip().lstrip(BOM).strip()


def detect_delimiter(header_line: str) -> str:
    """Pick the candidate delimiter that occurs most often in the header."""
    best, best_count = DEFAULT_DELIMITER, 0
    for candidate in CANDIDATE_DELIMITERS:
        count = header_line.count(candidate)
        if count > best_count:
            best, best_count = candidate, count
    return best


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line
    return ""


def _read_records(text: str, delimiter: str) -> List[List[object]]:
    """Tokenise the whole payload; missing trailing cells come back as NaN."""
    width = max(line.count(delimiter) for line in text.splitlines()) + 1
    df = pd.read_csv(
        io.StringIO(text),
        sep=delimiter,
        engine="python",
        header=None,
        names=list(range(width)),
        dtype=str,
        keep_default_na=False,
        index_col=False,
        skip_blank_lines=True,
    )
    return [list(record) for record in df.itertuples(index=False, name=None)]


def _read_records_per_line(text: str, delimiter: str) -> List[List[object]]:
    """Line-by-line tokenising that keeps a malformed line's raw cell text."""
    records: List[List[object]] = []
    recovered = 0
    for line in text.splitlines():
        if not line.strip():
            continue
        try:
            records.append(next(csv.reader([line], delimiter=delimiter, strict=True)))
        except csv.Error:
            records.append(next(csv.reader([line], delimiter=delimiter, quoting=csv.QUOTE_NONE)))
            recovered += 1
    if recovered:
        logger.warning("Kept raw cell text for %d malformed CSV line(s)", recovered)
    return records


def _header_cells(record: List[object]) -> List[str]:
    present = [i for i, cell in enumerate(record) if isinstance(cell, str)]
    if not present:
        return []
    return [normalize_header(cell) if isinstance(cell, str) else "" for cell in record[: present[-1] + 1]]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def read_payment_csv(raw_bytes: bytes) -> ParsedCsv:
    """Parse raw upload bytes into normalised headers and verbatim rows.

    Values are kept exactly as they appear in the file (no trimming);
    normalisation only happens at rule-evaluation time. Headers are taken
    from the first record as written, so blank or repeated names are not
    renamed; a repeated header maps to its first column.
    """
    if not raw_bytes:
        raise CsvParseError("CSV file is empty.")

    text = raw_bytes.decode("utf-8", errors="replace")
    if text.startswith(BOM):
        text = text[len(BOM):]
    if not text.strip():
        raise CsvParseError("CSV file is empty.")

    delimiter = detect_delimiter(_first_line(text))

    try:
        records = _read_records(text, delimiter)
    except EmptyDataError as exc:
        raise CsvParseError("CSV file has no header row.") from exc
    except (ParserError, csv.Error) as exc:
        logger.info("Strict CSV tokenising failed (%s); reading line by line", exc)
        records = _read_records_per_line(text, delimiter)

    headers = _header_cells(records[0]) if records else []
    if not any(headers):
        raise CsvParseError("CSV file has no header row.")
    if len(records) < 2:
        raise CsvParseError("CSV file has a header but no data rows.")

    rows: List[Dict[str, str]] = []
    for record in records[1:]:
        fields: Dict[str, str] = {}
        for index, header in enumerate(headers):
            value = record[index] if index < len(record) else ""
            fields.setdefault(header, value if isinstance(value, str) else "")
        rows.append(fields)

    logger.debug(
        "Parsed CSV with %d columns and %d rows (delimiter=%r)",
        len(headers),
        len(rows),
        delimiter,
    )
    return ParsedCsv(headers=headers, delimiter=delimiter, rows=rows)
