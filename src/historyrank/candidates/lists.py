"""Raw source-list discovery and parsing.

Source lists are text files produced by ranking models, named like
"CLAUDE SONNET 4.5 LIST 2 (January 12, 2025).txt". The body holds one
or more JSON arrays of {"rank": ..., "name": ...} objects, sometimes
with prose or a second continuation array in between.

Parsing is forgiving: a broken array or a malformed record is skipped
and counted, never fatal for the rest of the file.
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

LIST_FILENAME_RE = re.compile(r"^(.+?)\s+LIST\s+(\d+)\s*\(.*\)\.txt$", re.IGNORECASE)


class ListParseError(ValueError):
    """A source list contained no parseable JSON array."""


@dataclass
class ListFile:
    """A detected source list and the source/sample it represents."""

    path: Path
    source: str
    sample_id: str


@dataclass
class ListEntry:
    rank: float
    name: str
    contribution: str | None = None


@dataclass
class ParsedList:
    """Entries of one list, sorted by rank, plus what was skipped."""

    entries: list[ListEntry]
    skipped_records: int = 0
    skipped_arrays: int = 0


def source_from_filename(filename: str) -> tuple[str, str] | None:
    """Derive (source_id, sample_id) from a list filename.

    "GPT-4O LIST 1 (January 15, 2025).txt" -> ("gpt-4o", "list-1").
    Returns None for files that do not follow the naming pattern.
    """
    match = LIST_FILENAME_RE.match(filename)
    if not match:
        return None
    source = re.sub(r"\s+", "-", match.group(1).strip().lower())
    return source, f"list-{match.group(2)}"


def detect_list_files(raw_dir: Path) -> list[ListFile]:
    """Find all source lists in a directory, sorted by source then sample."""
    if not raw_dir.exists():
        logger.warning(f"Raw list directory not found: {raw_dir}")
        return []
    found = []
    for path in raw_dir.iterdir():
        parsed = source_from_filename(path.name)
        if parsed and path.is_file():
            found.append(ListFile(path=path, source=parsed[0], sample_id=parsed[1]))
    found.sort(key=lambda f: (f.source, f.sample_id))
    logger.info(f"Detected {len(found)} source lists in {raw_dir}")
    return found


def _find_json_arrays(content: str) -> Iterator[str]:
    """Yield every top-level [...] span, ignoring brackets inside strings."""
    search_start = 0
    while True:
        start = content.find("[", search_start)
        if start == -1:
            return

        depth = 0
        end = -1
        in_string = False
        escape = False
        for i in range(start, len(content)):
            char = content[i]
            if escape:
                escape = False
                continue
            if char == "\\" and in_string:
                escape = True
                continue
            if char == '"':
                in_string = not in_string
                continue
            if in_string:
                continue
            if char == "[":
                depth += 1
            elif char == "]":
                depth -= 1
                if depth == 0:
                    end = i + 1
                    break

        if end == -1:
            return
        yield content[start:end]
        search_start = end


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_list_text(content: str) -> ParsedList:
    """Parse the body of a source list.

    Duplicate ranks keep their first occurrence.

    Raises:
        ListParseError: If no JSON array could be parsed at all.
    """
    entries: list[ListEntry] = []
    seen_ranks: set[float] = set()
    skipped_records = 0
    skipped_arrays = 0
    parsed_any = False

    for span in _find_json_arrays(content):
        try:
            records = json.loads(span)
        except json.JSONDecodeError:
            skipped_arrays += 1
            logger.debug(f"Skipping unparseable array ({len(span)} chars)")
            continue
        parsed_any = True
        for record in records:
            if (
                not isinstance(record, dict)
                or not isinstance(record.get("name"), str)
                or not record["name"].strip()
                or not _is_number(record.get("rank"))
            ):
                skipped_records += 1
                continue
            if record["rank"] in seen_ranks:
                continue
            seen_ranks.add(record["rank"])
            contribution = record.get("primary_contribution")
            entries.append(
                ListEntry(
                    rank=record["rank"],
                    name=record["name"].strip(),
                    contribution=contribution if isinstance(contribution, str) else None,
                )
            )

    if not parsed_any:
        raise ListParseError("No valid JSON arrays found")

    entries.sort(key=lambda e: e.rank)
    return ParsedList(entries, skipped_records=skipped_records, skipped_arrays=skipped_arrays)


def parse_list_file(path: Path) -> ParsedList:
    """Read and parse one source list file."""
    try:
        return parse_list_text(path.read_text(encoding="utf-8"))
    except ListParseError as e:
        raise ListParseError(f"{path.name}: {e}") from e
