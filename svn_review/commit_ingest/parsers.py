"""Normalization of raw SVN payloads.

The command executor hands back the xml2js-style shape produced by the SVN
tooling: every element is a dict, attributes live under ``"$"``, text under
``"_"`` and child elements are always lists. Nothing outside this module
should look at that shape.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from svn_review.errors import SvnError
from svn_review.models import ChangeAction, Commit, Diff, FileChange, RepositoryInfo

logger = logging.getLogger(__name__)

DIFF_SEPARATOR = "Index: "


def _first(node: Any, key: str, default: Any = None) -> Any:
    if not isinstance(node, dict):
        return default
    value = node.get(key)
    if isinstance(value, list):
        return value[0] if value else default
    return default if value is None else value


def _text(value: Any, default: str = "") -> str:
    if isinstance(value, dict):
        value = value.get("_")
    if value is None:
        return default
    return str(value)


def _parse_int(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _parse_timestamp(value: str) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable log date %r, using current time", value)
        return datetime.now(timezone.utc)


def extract_log_entries(payload: Any) -> List[Dict[str, Any]]:
    """Return the ``logentry`` nodes of a log payload, always as a list."""
    log = payload.get("log") if isinstance(payload, dict) else None
    if not isinstance(log, dict):
        return []
    entries = log.get("logentry")
    if not entries:
        return []
    if isinstance(entries, dict):
        entries = [entries]
    return [entry for entry in entries if isinstance(entry, dict)]


def parse_log_entry(entry: Dict[str, Any]) -> Commit:
    attrs = entry.get("$") or {}
    revision = _parse_int(attrs.get("revision"))
    if revision is None:
        raise SvnError("Malformed log entry: missing revision", entry, code="SVN_PARSE_ERROR")

    return Commit(
        revision=revision,
        author=_text(_first(entry, "author"), "unknown") or "unknown",
        timestamp=_parse_timestamp(_text(_first(entry, "date"))),
        message=_text(_first(entry, "msg")),
    )


def parse_file_changes(entry: Dict[str, Any]) -> List[FileChange]:
    paths = _first(entry, "paths")
    raw_paths = paths.get("path") if isinstance(paths, dict) else None
    if not raw_paths:
        return []
    if not isinstance(raw_paths, list):
        raw_paths = [raw_paths]

    changes: List[FileChange] = []
    for node in raw_paths:
        attrs = node.get("$", {}) if isinstance(node, dict) else {}
        try:
            action = ChangeAction(attrs.get("action", "M"))
        except ValueError:
            logger.debug("Unknown change action %r, treating as modified", attrs.get("action"))
            action = ChangeAction.MODIFIED

        copy_from_path = attrs.get("copyfrom-path")
        changes.append(
            FileChange(
                path=_text(node),
                action=action,
                copy_from_path=copy_from_path,
                copy_from_revision=_parse_int(attrs.get("copyfrom-rev")) if copy_from_path else None,
            )
        )
    return changes


def split_diff(diff_output: Any) -> List[Diff]:
    """Split a revision-wide diff into one record per file.

    Each file block follows an ``Index: `` marker whose line carries the path.
    """
    if not diff_output:
        return []
    if isinstance(diff_output, bytes):
        diff_output = diff_output.decode("utf-8", errors="replace")

    diffs: List[Diff] = []
    for block in str(diff_output).split(DIFF_SEPARATOR):
        if not block.strip():
            continue
        path = block.split("\n", 1)[0].strip()
        diffs.append(Diff(path=path, diff=block))
    return diffs


def join_diffs(diffs: List[Diff]) -> str:
    return "".join(DIFF_SEPARATOR + item.diff for item in diffs)


def parse_repository_info(payload: Any, fallback_url: str) -> RepositoryInfo:
    info = payload.get("info") if isinstance(payload, dict) else None
    entry = _first(info, "entry", {})
    repository = _first(entry, "repository", {})
    attrs = entry.get("$", {}) if isinstance(entry, dict) else {}

    uuid = _text(_first(repository, "uuid")) or None
    return RepositoryInfo(
        url=_text(_first(entry, "url")) or fallback_url,
        uuid=uuid,
        revision=_parse_int(attrs.get("revision") or "0") or 0,
    )
