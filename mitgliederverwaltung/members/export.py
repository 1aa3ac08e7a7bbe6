"""
CSV export of member lists.

The file starts with a UTF-8 BOM so that spreadsheet programs pick the
right encoding; the header row carries the human-readable field labels.
"""

import csv
import io
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Sequence

from mitgliederverwaltung.members.fields import (
    ALL_FIELDS,
    DEFAULT_LIST_FIELDS,
    EXPORT_PRESETS,
    field_label,
)

BOM = "\ufeff"
_FILENAME_RE = re.compile(r"[^a-zA-Z0-9_-]")


def parse_bool_param(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value == "1" or value.lower() == "true"


def sanitize_filename(value: str | None) -> str:
    return _FILENAME_RE.sub("_", value or "export")


@dataclass
class CsvOptions:
    """Dialect of the exported file."""

    delimiter: str = ";"
    quote: str = '"'
    mark_linebreaks: bool = False

    @classmethod
    def from_params(cls, delim: str | None, quote: str | None, lbmark: str | None) -> "CsvOptions":
        delimiter = delim or ";"
        if delimiter == "tab":
            delimiter = "\t"
        return cls(
            delimiter=delimiter,
            quote='"' if quote is None else quote,
            mark_linebreaks=parse_bool_param(lbmark),
        )


def export_fields(fields_param: str | None, preset: str | None, include_id: bool) -> list[str]:
    """
    Columns to export.

    Explicit fields win over a preset; unknown names are dropped. ``id``
    is added or removed according to ``include_id``.
    """
    if fields_param:
        requested = [p.strip() for p in fields_param.split(",") if p.strip()]
        fields = [f for f in requested if f in ALL_FIELDS] or list(DEFAULT_LIST_FIELDS)
    elif preset in EXPORT_PRESETS:
        fields = list(EXPORT_PRESETS[preset])
    else:
        fields = list(DEFAULT_LIST_FIELDS)

    if include_id and "id" not in fields:
        fields.insert(0, "id")
    if not include_id:
        fields = [f for f in fields if f != "id"]
    return fields


def format_cell(value: Any, mark_linebreaks: bool = False) -> str:
    if value is None:
        text = ""
    elif isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, date):
        text = value.isoformat()
    else:
        text = str(value)
    if mark_linebreaks:
        text = text.replace("\r\n", "\\n").replace("\n", "\\n")
    return text


def render_csv(
    fields: Sequence[str],
    rows: Iterable[dict[str, Any]],
    options: CsvOptions | None = None,
) -> str:
    """Render rows as CSV text including the BOM and a label header."""
    options = options or CsvOptions()
    buffer = io.StringIO()
    if options.quote:
        writer = csv.writer(
            buffer,
            delimiter=options.delimiter,
            quotechar=options.quote[0],
            doublequote=True,
            quoting=csv.QUOTE_MINIMAL,
            lineterminator="\n",
        )
    else:
        # No quote character: special characters are backslash-escaped
        writer = csv.writer(
            buffer,
            delimiter=options.delimiter,
            quoting=csv.QUOTE_NONE,
            escapechar="\\",
            lineterminator="\n",
        )

    writer.writerow([field_label(f) for f in fields])
    for row in rows:
        writer.writerow([format_cell(row.get(f), options.mark_linebreaks) for f in fields])

    return BOM + buffer.getvalue().removesuffix("\n")
