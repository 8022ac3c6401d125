"""Internal translation subpackage for prompt chain -> n8n workflow compilation.

All functions within this package are pure (no network I/O or database writes)
and deterministic. The public API lives in the top-level `translator.py`
facade; callers should not import directly from this package unless accessing
internal helpers for testing purposes.

Modules:
    rules: condition/validation-rule transpiler (ordered lexical rewrites)
    nodes: per-node builders for prompt, router, validator, integration
    connections: edge -> adjacency map translation with synthetic trigger edge
    credential_refs: service -> n8n credential type and org-scoped naming

Design Invariants:
    - No network calls or database writes permitted
    - Identical snapshots compile to identical definitions
    - Exactly one synthetic trigger node, always wired to the first authored node
    - Unknown node types fail the compile before anything is deployed
"""
from __future__ import annotations

from . import connections as connections  # noqa: F401
from . import credential_refs as credential_refs  # noqa: F401
from . import nodes as nodes  # noqa: F401
from . import rules as rules  # noqa: F401

__all__ = ["connections", "credential_refs", "nodes", "rules"]
