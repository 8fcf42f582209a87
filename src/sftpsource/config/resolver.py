"""
Placeholder substitution for loaded configuration.

String values may reference environment variables as ``${NAME}`` or
``${NAME:-fallback}``, and the active environment as ``{env}``. A variable
that is unset and has no fallback stays in the value verbatim, so a missing
secret shows up as-is in whatever error eventually uses it.
"""

import os
import re
from typing import Any

_PLACEHOLDER = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<fallback>[^}]*))?\}")


def resolve_config(config_data: dict[str, Any], env: str = "dev") -> dict[str, Any]:
    """Return a copy of ``config_data`` with every placeholder substituted."""
    return _substitute(config_data, env)


def _expand(match: re.Match[str]) -> str:
    value = os.environ.get(match.group("name"))
    if value is not None:
        return value
    fallback = match.group("fallback")
    return fallback if fallback is not None else match.group(0)


def _substitute(node: Any, env: str) -> Any:
    if isinstance(node, dict):
        return {key: _substitute(value, env) for key, value in node.items()}
    if isinstance(node, list):
        return [_substitute(item, env) for item in node]
    if isinstance(node, str):
        return _PLACEHOLDER.sub(_expand, node).replace("{env}", env)
    return node
