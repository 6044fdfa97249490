"""Streaming export of admin list data."""

from __future__ import annotations

import csv
import datetime
import html
import io
import json
import re
from typing import Any, Callable, Iterable, Iterator, Mapping

from fastapi.responses import StreamingResponse

from ..exceptions import ConfigurationError

Row = Mapping[str, Any]

CONTENT_TYPES = {
    "json": "application/json",
    "xml": "text/xml",
    "csv": "text/csv",
    "xls": "application/vnd.ms-excel",
}

_TAG_RE = re.compile(r"[^A-Za-z0-9_.-]")


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    return str(value)


def _json_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return _text(value)


def write_json(rows: Iterable[Row]) -> Iterator[str]:
    yield "["
    first = True
    for row in rows:
        if not first:
            yield ","
        first = False
        yield json.dumps({k: _json_value(v) for k, v in row.items()})
    yield "]"


def _tag(name: str) -> str:
    tag = _TAG_RE.sub("_", name)
    return tag if tag and not tag[0].isdigit() else f"_{tag}"


def write_xml(rows: Iterable[Row]) -> Iterator[str]:
    yield '<?xml version="1.0" ?>\n<datas>\n'
    for row in rows:
        parts = ["<data>\n"]
        for key, value in row.items():
            text = _text(value).replace("]]>", "]]]]><![CDATA[>")
            parts.append(f"<{_tag(key)}><![CDATA[{text}]]></{_tag(key)}>\n")
        parts.append("</data>\n")
        yield "".join(parts)
    yield "</datas>"


def write_csv(rows: Iterable[Row]) -> Iterator[str]:
    header_written = False
    for row in rows:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        if not header_written:
            writer.writerow(list(row.keys()))
            header_written = True
        writer.writerow([_text(v) for v in row.values()])
        yield buffer.getvalue()


def write_xls(rows: Iterable[Row]) -> Iterator[str]:
    yield (
        "<html><head>"
        '<meta http-equiv="Content-Type" content="text/html; charset=utf-8" />'
        '<meta name=ProgId content=Excel.Sheet><meta name=Generator content="crudadmin">'
        "</head><body><table>"
    )
    header_written = False
    for row in rows:
        cells = []
        if not header_written:
            cells.append("<tr>" + "".join(f"<th>{html.escape(str(k))}</th>" for k in row.keys()) + "</tr>")
            header_written = True
        cells.append("<tr>" + "".join(f"<td>{html.escape(_text(v))}</td>" for v in row.values()) + "</tr>")
        yield "".join(cells)
    yield "</table></body></html>"


WRITERS: dict[str, Callable[[Iterable[Row]], Iterator[str]]] = {
    "json": write_json,
    "xml": write_xml,
    "csv": write_csv,
    "xls": write_xls,
}


class Exporter:
    def get_response(self, fmt: str, filename: str, source: Iterable[Row]) -> StreamingResponse:
        try:
            writer = WRITERS[fmt]
        except KeyError as exc:
            raise ConfigurationError(f"Unable to export data in format `{fmt}`") from exc
        return StreamingResponse(
            writer(source),
            media_type=CONTENT_TYPES[fmt],
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
