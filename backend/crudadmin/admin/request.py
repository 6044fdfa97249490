"""Explicit request wrapper handed to every admin action.

Parameters are looked up in route attributes first, then the query string,
then the request body. Bracketed keys (``filter[title][value]``, ``idx[]``)
are expanded into nested dicts and lists so the form and datagrid layers can
work on plain Python structures.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping, Optional

from starlette.requests import Request

_BRACKET_RE = re.compile(r"\[([^\[\]]*)\]")
_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")
_TRUTHY = {"1", "true", "on", "yes", "ok"}


def _split_key(key: str) -> list[str]:
    head, sep, rest = key.partition("[")
    if not sep or not head:
        return [key]
    parts = [head]
    parts.extend(_BRACKET_RE.findall("[" + rest))
    return parts


def parse_nested(pairs: Iterable[tuple[str, Any]]) -> dict[str, Any]:
    """Expand ``a[b][]=1`` style keys into nested containers (last scalar wins)."""
    result: dict[str, Any] = {}
    for key, value in pairs:
        parts = _split_key(key)
        node: Any = result
        for i, part in enumerate(parts):
            last = i == len(parts) - 1
            if isinstance(node, list):
                if last:
                    node.append(value)
                else:
                    child: dict[str, Any] = {}
                    node.append(child)
                    node = child
                continue
            if last:
                node[part] = value
                break
            following = parts[i + 1]
            expected: type = list if following == "" else dict
            current = node.get(part)
            if not isinstance(current, expected):
                current = expected()
                node[part] = current
            node = current
    return result


def flatten_nested(value: Mapping[str, Any], prefix: str = "") -> list[tuple[str, Any]]:
    """Inverse of :func:`parse_nested`, used when building query strings."""
    pairs: list[tuple[str, Any]] = []
    for key, item in value.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(item, Mapping):
            pairs.extend(flatten_nested(item, name))
        elif isinstance(item, (list, tuple)):
            for element in item:
                pairs.append((f"{name}[]", element))
        elif item is None:
            continue
        elif isinstance(item, bool):
            pairs.append((name, "1" if item else "0"))
        else:
            pairs.append((name, item))
    return pairs


def is_truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUTHY


class AdminRequest:
    def __init__(
        self,
        raw: Request,
        *,
        body: Optional[Mapping[str, Any]] = None,
        attributes: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.raw = raw
        self.attributes: dict[str, Any] = dict(raw.path_params)
        if attributes:
            self.attributes.update(attributes)
        self.query: dict[str, Any] = parse_nested(raw.query_params.multi_items())
        self.body: dict[str, Any] = dict(body or {})

    @classmethod
    async def from_starlette(cls, raw: Request, attributes: Optional[Mapping[str, Any]] = None) -> "AdminRequest":
        body: dict[str, Any] = {}
        if raw.method.upper() not in {"GET", "HEAD", "OPTIONS"}:
            content_type = raw.headers.get("content-type", "")
            if content_type.startswith("application/json"):
                payload = await raw.json() if await raw.body() else {}
                body = payload if isinstance(payload, dict) else {}
            elif content_type.startswith(_FORM_CONTENT_TYPES):
                form = await raw.form()
                body = parse_nested(form.multi_items())
        return cls(raw, body=body, attributes=attributes)

    # ----- parameter access -------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        for bag in (self.attributes, self.query, self.body):
            if key in bag:
                return bag[key]
        return default

    def get_list(self, key: str) -> list[Any]:
        value = self.get(key)
        if value is None:
            return []
        if isinstance(value, list):
            return list(value)
        if isinstance(value, Mapping):
            return list(value.values())
        return [value]

    def has(self, key: str) -> bool:
        return any(key in bag for bag in (self.attributes, self.query, self.body))

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    # ----- HTTP semantics ---------------------------------------------------

    @property
    def method(self) -> str:
        return self.raw.method.upper()

    def get_rest_method(self) -> str:
        """HTTP verb, honouring a ``_method`` override on POST requests."""
        method = self.method
        if method == "POST":
            override = self.body.get("_method") or self.query.get("_method")
            if isinstance(override, str) and override.strip():
                return override.strip().upper()
        return method

    def is_xml_http_request(self) -> bool:
        if self.raw.headers.get("x-requested-with", "").lower() == "xmlhttprequest":
            return True
        return is_truthy(self.get("_xml_http_request"))

    @property
    def session(self) -> dict[str, Any]:
        return self.raw.scope.setdefault("session", {})

    @property
    def url(self) -> str:
        return str(self.raw.url)
