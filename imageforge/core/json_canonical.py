"""
Deterministic JSON serialization for the image manifest.

Identical manifests produce identical bytes, so an unchanged run rewrites
the manifest file without producing a diff.
"""

from __future__ import annotations

from typing import Any

import orjson


def canonical_json_dumps(obj: Any, *, indent: bool = False) -> str:
    """
    Serialize object to canonical JSON string.

    Guarantees sorted keys, UTF-8 output and ``\\n`` line endings.

    Args:
        obj: Plain JSON-compatible data.
        indent: If True, pretty-print with 2-space indentation.

    Returns:
        Canonical JSON string.

    Raises:
        TypeError: If ``obj`` holds a value orjson cannot serialize.

    Examples:
        >>> canonical_json_dumps({"b": 2, "a": 1})
        '{"a":1,"b":2}'
    """
    options = orjson.OPT_SORT_KEYS

    if indent:
        options |= orjson.OPT_INDENT_2

    return orjson.dumps(obj, option=options).decode("utf-8")


def canonical_json_loads(content: str | bytes) -> Any:
    """
    Parse JSON text.

    Raises:
        orjson.JSONDecodeError: If the content is not valid JSON.

    Examples:
        >>> canonical_json_loads('{"a":1}')
        {'a': 1}
    """
    return orjson.loads(content)
