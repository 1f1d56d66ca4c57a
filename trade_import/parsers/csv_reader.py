"""CSV tokenizing for broker exports.

Broker CSVs are rarely a clean header + rows:
- Statement exports carry preamble lines (account name, date range) above
  the real header
- Some exports wrap every line in one outer quote pair and double the inner
  quotes: "symbol,""qty"",price"  -- these are unwrapped before tokenizing
- Composite statements hold several sections; only one of them is trades

Tokenizing is done fully before any row is interpreted. A tokenizer
failure is the one error surfaced as an exception (CSVImportError).
"""

from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

_LINE_SPLIT_RE = re.compile(r"\r\n|\n|\r")


class CSVImportError(Exception):
    """The file could not be tokenized at all."""


@dataclass
class CSVTable:
    headers: list[str]
    rows: list[dict[str, str]]
    header_row: int = 0  # index of the header among non-empty tokenized rows
    preamble: list[list[str]] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.rows


def split_lines(content: str) -> list[str]:
    return _LINE_SPLIT_RE.split(content)


def _unwrap_line(line: str) -> str:
    stripped = line.strip()
    if len(stripped) < 2 or not (stripped.startswith('"') and stripped.endswith('"')):
        return line
    if '""' not in stripped and "," not in stripped[1:-1]:
        return line
    try:
        cells = next(csv.reader([stripped]))
    except (csv.Error, StopIteration):
        return line
    if len(cells) == 1 and "," in cells[0]:
        return cells[0]
    return line


def repair_escaped_lines(content: str) -> str:
    """Unwrap lines that were quoted as a whole with doubled inner quotes."""
    lines = split_lines(content)
    repaired = [_unwrap_line(line) for line in lines]
    changed = sum(1 for a, b in zip(lines, repaired) if a != b)
    if changed:
        logger.debug("[CSV Reader] Unwrapped %d doubly-escaped lines", changed)
    return "\n".join(repaired)


def tokenize(content: str) -> list[list[str]]:
    """Tokenize CSV text into rows of stripped cells, dropping blank rows."""
    if content.startswith("\ufeff"):
        content = content[1:]
    try:
        rows = list(csv.reader(io.StringIO(repair_escaped_lines(content))))
    except csv.Error as exc:
        raise CSVImportError(f"Could not tokenize CSV: {exc}") from exc
    return [[cell.strip() for cell in row] for row in rows if any(cell.strip() for cell in row)]


def _header_score(cells: list[str], keywords: Iterable[str]) -> int:
    lower = [c.lower() for c in cells if c]
    return sum(1 for kw in keywords if any(kw in c for c in lower))


def find_header_index(
    rows: list[list[str]],
    keywords: Optional[Iterable[str]] = None,
    scan_lines: int = 10,
    min_matches: int = 2,
) -> int:
    """Index of the most header-like row among the first ``scan_lines``.

    Without keywords the first row is the header. Otherwise the first row
    with the highest keyword hit count (at least ``min_matches``) wins,
    falling back to row 0.
    """
    if not rows or keywords is None:
        return 0
    keywords = [k.lower() for k in keywords]
    best_idx, best_score = 0, 0
    for idx, row in enumerate(rows[:scan_lines]):
        score = _header_score(row, keywords)
        if score > best_score:
            best_idx, best_score = idx, score
    return best_idx if best_score >= min_matches else 0


def _dedupe_headers(raw: list[str]) -> list[str]:
    headers: list[str] = []
    seen: dict[str, int] = {}
    for i, h in enumerate(raw):
        name = h.strip().strip('"') or f"column_{i + 1}"
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 1
        headers.append(name)
    return headers


def read_table(
    content: str,
    header_keywords: Optional[Iterable[str]] = None,
    scan_lines: int = 10,
) -> CSVTable:
    """Tokenize ``content`` and map each data row onto the inferred header."""
    rows = tokenize(content)
    if not rows:
        return CSVTable(headers=[], rows=[])

    header_idx = find_header_index(rows, header_keywords, scan_lines)
    headers = _dedupe_headers(rows[header_idx])

    records: list[dict[str, str]] = []
    for cells in rows[header_idx + 1:]:
        if len(cells) < len(headers):
            cells = cells + [""] * (len(headers) - len(cells))
        records.append(dict(zip(headers, cells)))

    return CSVTable(
        headers=headers,
        rows=records,
        header_row=header_idx,
        preamble=rows[:header_idx],
    )


def guess_header_line(content: str, scan_lines: int = 10) -> list[str]:
    """Best-guess header cells for format detection.

    Scans the first ``scan_lines`` lines for one mentioning a symbol, date or
    instrument column, tolerating preamble rows above it.
    """
    lines = split_lines(repair_escaped_lines(content))[:scan_lines]
    if not lines:
        return []
    header_line = lines[0]
    for line in lines:
        lower = line.lower()
        if "symbol" in lower or "date" in lower or "instrument" in lower or "contract" in lower:
            header_line = line
            break
    try:
        cells = next(csv.reader([header_line]), [])
    except csv.Error:
        cells = header_line.split(",")
    return [c.strip().strip('"') for c in cells]


def extract_section(
    content: str,
    title_markers: Iterable[str],
    header_markers: Iterable[str],
    end_markers: Iterable[str] = (),
) -> Optional[str]:
    """Slice one section out of a composite statement export.

    The section starts at the first header line (a line containing any of
    ``header_markers``) that follows a title line, or anywhere if no title
    is present. It ends at the next blank line or at a line starting with
    one of ``end_markers``. Returns None when no header is found.
    """
    lines = split_lines(content)
    titles = [t.lower() for t in title_markers]
    header_keys = [h.lower() for h in header_markers]
    ends = [e.lower() for e in end_markers]

    search_from = 0
    for idx, line in enumerate(lines):
        lower = line.strip().strip('"').lower()
        if any(lower.startswith(t) for t in titles):
            search_from = idx + 1
            break

    header_idx: Optional[int] = None
    for idx in range(search_from, len(lines)):
        lower = lines[idx].lower()
        if any(h in lower for h in header_keys):
            header_idx = idx
            break
    if header_idx is None:
        return None

    section = [lines[header_idx]]
    for line in lines[header_idx + 1:]:
        stripped = line.strip()
        if not stripped.strip(","):
            break
        lower = stripped.strip('"').lower()
        if any(lower.startswith(e) for e in ends):
            break
        section.append(line)

    logger.debug(
        "[CSV Reader] Extracted section at line %d (%d data lines)",
        header_idx + 1, len(section) - 1,
    )
    return "\n".join(section)
