"""Condition and validation-rule transpilation into n8n Function-node JavaScript.

Router conditions and validator rules are authored as short phrases such as
`sentiment is "negative"` or `contains "refund"`. They are turned into
JavaScript boolean expressions evaluated against `input` (the first incoming
item's json) inside generated Function nodes.

This is lexical substitution, not parsing:

    Conditions: a fixed, ordered list of plain substring replacements
        sentiment    -> input.sentiment
        urgency      -> input.urgency
        contains     -> input.content.includes
        is           -> ===
        greater than -> >
        less than    -> <
    applied left to right, every occurrence, case-sensitive, no word
    boundaries. `this` becomes `th===`; phrasing outside the vocabulary passes
    through untouched and may not be valid JavaScript. Known limitation; do
    not "fix" silently, replace the transpiler instead.

    Validation rules: first matching keyword wins
        "length"             -> content present and non-empty
        contains "<term>"    -> content includes term
        "not empty"          -> content non-blank after trim
        anything else        -> `true` (always pass)

Callers depend on the `RuleTranspiler` protocol only, so a real small-grammar
parser can replace `SubstitutionTranspiler` without touching node builders.

Public API:
    RuleTranspiler: protocol for condition/rule translation
    SubstitutionTranspiler: ordered-rewrite implementation
    translate_condition / translate_validation_rule: module-level shortcuts
    js_string: JSON-escaped JavaScript string literal helper
"""
from __future__ import annotations

import json
import re
from typing import Protocol, Sequence, Tuple

__all__ = [
    "CONDITION_REWRITES",
    "ALWAYS_PASS",
    "RuleTranspiler",
    "SubstitutionTranspiler",
    "translate_condition",
    "translate_validation_rule",
    "js_string",
]

CONDITION_REWRITES: Tuple[Tuple[str, str], ...] = (
    ("sentiment", "input.sentiment"),
    ("urgency", "input.urgency"),
    ("contains", "input.content.includes"),
    ("is", "==="),
    ("greater than", ">"),
    ("less than", "<"),
)

ALWAYS_PASS = "true"

_CONTAINS_TERM = re.compile(r'contains "([^"]+)"')


def js_string(value: str) -> str:
    """Render `value` as a JavaScript string literal (JSON escaping is valid JS)."""
    return json.dumps(value, ensure_ascii=False)


class RuleTranspiler(Protocol):
    def translate_condition(self, text: str) -> str:
        ...

    def translate_validation_rule(self, text: str) -> str:
        ...


class SubstitutionTranspiler:
    """Ordered textual rewrite transpiler (see module docstring)."""

    def __init__(self, rewrites: Sequence[Tuple[str, str]] = CONDITION_REWRITES):
        self._rewrites = tuple(rewrites)

    def translate_condition(self, text: str) -> str:
        expression = text
        for needle, replacement in self._rewrites:
            expression = expression.replace(needle, replacement)
        return expression

    def translate_validation_rule(self, text: str) -> str:
        if "length" in text:
            return "input.content && input.content.length > 0"
        if "contains" in text:
            match = _CONTAINS_TERM.search(text)
            term = match.group(1) if match else ""
            return f"input.content && input.content.includes({js_string(term)})"
        if "not empty" in text:
            return "input.content && input.content.trim().length > 0"
        return ALWAYS_PASS


_default = SubstitutionTranspiler()


def translate_condition(text: str) -> str:
    return _default.translate_condition(text)


def translate_validation_rule(text: str) -> str:
    return _default.translate_validation_rule(text)
