"""Helpers for exposition text that does not come from our own registry."""

from __future__ import annotations

import structlog

logger = structlog.get_logger()

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def inject_label(line: str, name: str, value: str) -> str:
    """Add ``name="value"`` as the first label of an exposition line.

    Comment and blank lines are returned unchanged, as are lines that are
    neither comments nor parsable samples.
    """
    if not line.strip() or line.lstrip().startswith("#"):
        return line

    label = f'{name}="{_escape_label_value(value)}"'

    brace = line.find("{")
    space = line.find(" ")
    if brace != -1 and (space == -1 or brace < space):
        head, tail = line[: brace + 1], line[brace + 1 :]
        separator = "" if tail.lstrip().startswith("}") else ","
        return f"{head}{label}{separator}{tail}"

    if space != -1:
        return f"{line[:space]}{{{label}}}{line[space:]}"

    logger.info("unparsable_metric_line", line=line)
    return line
