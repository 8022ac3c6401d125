"""File-backed registry of prompt chain id -> n8n workflow id.

The deployment cache is authoritative once populated, but it lives in process
memory. This registry persists the same mapping so a restarted process seeds
its cache from known ids instead of falling back to name lookup.

`store_deployment` uses an atomic write pattern (write to a temporary file then
rename) so an interrupted write never leaves a truncated registry behind.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Dict, Optional

logger = logging.getLogger(__name__)


def load_deployments(path: Optional[str]) -> Dict[str, str]:
    """Load the persisted deployment map.

    Missing, empty or unreadable files yield an empty map; non-string entries
    are dropped.

    Args:
        path: The path to the registry file (None disables persistence).

    Returns:
        Mapping of prompt chain id to n8n workflow id.
    """
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read().strip()
    except FileNotFoundError:
        return {}
    except OSError as e:
        logger.warning("Could not read deployment registry %s: %s", path, e)
        return {}
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Deployment registry %s is not valid JSON; ignoring", path)
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(k): str(v) for k, v in data.items() if isinstance(v, (str, int)) and not isinstance(v, bool)}


def store_deployments(path: str, deployments: Dict[str, str]) -> None:
    """Atomically write the complete deployment map to `path`."""
    tmp_path = f"{path}.tmp"
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(deployments, f, indent=2, sort_keys=True)
    os.replace(tmp_path, path)


def store_deployment(path: str, workflow_id: str, n8n_workflow_id: str) -> None:
    """Record one mapping, preserving the others already on disk."""
    deployments = load_deployments(path)
    deployments[workflow_id] = n8n_workflow_id
    store_deployments(path, deployments)


__all__ = ["load_deployments", "store_deployments", "store_deployment"]
