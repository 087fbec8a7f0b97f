"""Command template rendering for matrix routing and query payloads."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

PLACEHOLDER_NAMES = ("input", "output")

LINE_ENDINGS: dict[str, str] = {
    "none": "",
    "cr": "\r",
    "lf": "\n",
    "crlf": "\r\n",
}


def render(template: str, params: Mapping[str, Any] | None = None) -> str:
    """Substitute ``{input}`` and ``{output}`` in a command template.

    Only placeholders with a value in ``params`` are replaced; anything else,
    including placeholders without a value, is passed through unchanged. The
    payload is not escaped and no line ending is appended.
    """

    result = template or ""
    if not params:
        return result
    for name in PLACEHOLDER_NAMES:
        value = params.get(name)
        if value is None:
            continue
        result = result.replace("{" + name + "}", str(value))
    return result


def placeholders(template: str) -> set[str]:
    """Return the placeholder names a template references."""
    return {name for name in PLACEHOLDER_NAMES if "{" + name + "}" in (template or "")}


def requires_output(template: str) -> bool:
    return "output" in placeholders(template)


def split_line_ending(line_ending: str | None) -> tuple[str, str]:
    """Return ``(backend_policy, literal_suffix)`` for a line-ending setting.

    Named policies are forwarded to the backend untouched. Any other value is
    a literal suffix that has to be appended to the payload before sending,
    with the backend told to add nothing.
    """

    if line_ending is None or line_ending == "":
        return "none", ""
    lowered = line_ending.strip().lower()
    if lowered in LINE_ENDINGS:
        return lowered, ""
    return "none", line_ending


def apply_line_ending(payload: str, line_ending: str | None) -> str:
    """Return the payload exactly as it goes out on the wire."""
    policy, suffix = split_line_ending(line_ending)
    return f"{payload}{suffix}{LINE_ENDINGS[policy]}"
