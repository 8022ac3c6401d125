"""Per-node translation from authored graph nodes to n8n node definitions.

Dispatch is exhaustive over the closed node union:

    PromptNode       -> n8n-nodes-base.httpRequest calling the LLM provider
    RouterNode       -> n8n-nodes-base.function returning a route tag
    ValidatorNode    -> n8n-nodes-base.function attaching validation results
    IntegrationNode  -> gmail | slack | httpRequest webhook | passthrough function

Prompt provider selection is by model-name prefix (`gpt*` -> OpenAI chat
completions, `claude*` -> Anthropic messages). Any other or missing model falls
back to the default OpenAI model; the authored model name is not forwarded in
that case.

Router semantics: conditions are evaluated in author order and the first
match returns its zero-based index as `routePath` (string). No match yields
`routePath: 'default'`. Conditions may overlap; first-match-wins is the
tie-break.

Validator semantics: every rule is evaluated (no short-circuit), each inside
its own try/catch so an evaluation error is recorded as that rule's failure.
`validation.passed` is the AND of all rule results; zero rules pass.

Integration semantics: unknown kinds never fail compilation. A kind with a
`webhookUrl` is posted to as a raw webhook; otherwise a logging passthrough
forwards items unchanged.

All builders are pure: the same node, name and org id produce identical
output.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import UnsupportedNodeType
from ..models.graph import (
    IntegrationNode,
    PromptNode,
    RouterNode,
    ValidatorNode,
)
from ..models.n8n import N8nNode
from .credential_refs import credential_ref
from .rules import RuleTranspiler, SubstitutionTranspiler, js_string

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_MODEL",
    "DEFAULT_TEMPERATURE",
    "DEFAULT_MAX_TOKENS",
    "INPUT_PASSTHROUGH",
    "NodeCompiler",
]

DEFAULT_MODEL = "gpt-3.5-turbo"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000
INPUT_PASSTHROUGH = "{{ $json.input }}"

ANTHROPIC_VERSION = "2023-06-01"

MAIL_KINDS = frozenset({"gmail", "mail", "email"})
CHAT_KINDS = frozenset({"slack", "chat"})
WEBHOOK_KINDS = frozenset({"webhook", "http"})

DEFAULT_CHAT_CHANNEL = "#general"
DEFAULT_MAIL_QUERY = "is:unread newer_than:1d"
DEFAULT_MAIL_LIMIT = 50


def _mail_limit(value: Any, node_id: str) -> int:
    if value is None or value == "" or isinstance(value, bool):
        return DEFAULT_MAIL_LIMIT
    try:
        limit = int(value)
    except (TypeError, ValueError):
        logger.warning("Node %s: mail limit %r is not a number; using %d", node_id, value, DEFAULT_MAIL_LIMIT)
        return DEFAULT_MAIL_LIMIT
    return limit if limit > 0 else DEFAULT_MAIL_LIMIT


def _comment(text: str) -> str:
    # Keep authored text on a single JS line comment.
    return " ".join(text.splitlines())


def _openai_request(
    model: str, prompt: str, temperature: float, max_tokens: int, org_id: Optional[str]
) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    body = {
        "model": model,
        "messages": [{"role": "user", "content": prompt}],
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    parameters = {
        "url": "https://api.openai.com/v1/chat/completions",
        "authentication": "predefinedCredentialType",
        "nodeCredentialType": "openAiApi",
        "method": "POST",
        "sendHeaders": True,
        "headerParameters": {
            "parameters": [{"name": "Content-Type", "value": "application/json"}]
        },
        "sendBody": True,
        "bodyContentType": "json",
        "jsonBody": json.dumps(body),
        "options": {"response": {"fullResponse": False}},
    }
    return parameters, credential_ref("openai", org_id)


def _anthropic_request(
    model: str, prompt: str, temperature: float, max_tokens: int, org_id: Optional[str]
) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    body = {
        "model": model,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "messages": [{"role": "user", "content": prompt}],
    }
    parameters = {
        "url": "https://api.anthropic.com/v1/messages",
        "authentication": "predefinedCredentialType",
        "nodeCredentialType": "anthropicApi",
        "method": "POST",
        "sendHeaders": True,
        "headerParameters": {
            "parameters": [
                {"name": "Content-Type", "value": "application/json"},
                {"name": "anthropic-version", "value": ANTHROPIC_VERSION},
            ]
        },
        "sendBody": True,
        "bodyContentType": "json",
        "jsonBody": json.dumps(body),
    }
    return parameters, credential_ref("anthropic", org_id)


_RequestBuilder = Callable[
    [str, str, float, int, Optional[str]], Tuple[Dict[str, Any], Optional[Dict[str, Any]]]
]

# Ordered: first matching prefix wins.
PROVIDER_PREFIXES: Tuple[Tuple[str, _RequestBuilder], ...] = (
    ("gpt", _openai_request),
    ("claude", _anthropic_request),
)


class NodeCompiler:
    """Compile one authored node into one `N8nNode`.

    Args:
        transpiler: condition/rule translator used by router and validator
            nodes. Defaults to `SubstitutionTranspiler`.
        org_id: when set, provider and integration nodes reference the org's
            own n8n credentials.
    """

    def __init__(self, transpiler: Optional[RuleTranspiler] = None, org_id: Optional[str] = None):
        self.transpiler: RuleTranspiler = transpiler or SubstitutionTranspiler()
        self.org_id = org_id

    def compile(self, node: Any, name: Optional[str] = None) -> N8nNode:
        """Translate `node`; `name` overrides the n8n display name (label, else id)."""
        node_name = name or getattr(getattr(node, "data", None), "label", None) or getattr(node, "id", "")
        if isinstance(node, PromptNode):
            return self._prompt(node, node_name)
        if isinstance(node, RouterNode):
            return self._router(node, node_name)
        if isinstance(node, ValidatorNode):
            return self._validator(node, node_name)
        if isinstance(node, IntegrationNode):
            return self._integration(node, node_name)
        raise UnsupportedNodeType(getattr(node, "type", type(node).__name__), getattr(node, "id", None))

    def _base(self, node: Any, name: str, node_type: str, parameters: Dict[str, Any],
              credentials: Optional[Dict[str, Any]] = None) -> N8nNode:
        return N8nNode(
            id=node.id,
            name=name,
            type=node_type,
            typeVersion=1,
            position=(node.position.x, node.position.y),
            parameters=parameters,
            credentials=credentials,
        )

    def _prompt(self, node: PromptNode, name: str) -> N8nNode:
        data = node.data
        model = data.model or DEFAULT_MODEL
        builder = None
        for prefix, candidate in PROVIDER_PREFIXES:
            if model.startswith(prefix):
                builder = candidate
                break
        if builder is None:
            logger.info(
                "Prompt node %s: model %r matches no provider; using %s", node.id, model, DEFAULT_MODEL
            )
            model = DEFAULT_MODEL
            builder = _openai_request
        temperature = data.temperature if data.temperature is not None else DEFAULT_TEMPERATURE
        max_tokens = data.maxTokens if data.maxTokens is not None else DEFAULT_MAX_TOKENS
        prompt = data.prompt or INPUT_PASSTHROUGH
        parameters, credentials = builder(model, prompt, temperature, max_tokens, self.org_id)
        return self._base(node, name, "n8n-nodes-base.httpRequest", parameters, credentials)

    def _router(self, node: RouterNode, name: str) -> N8nNode:
        lines: List[str] = ["// Router Logic", "const input = items[0].json;", ""]
        for index, condition in enumerate(node.data.conditions):
            expression = self.transpiler.translate_condition(condition)
            lines.extend(
                [
                    f"// Condition {index + 1}: {_comment(condition)}",
                    f"if ({expression}) {{",
                    f"  return [{{ json: {{ ...input, routePath: '{index}' }} }}];",
                    "}",
                    "",
                ]
            )
        lines.extend(
            [
                "// Default path",
                "return [{ json: { ...input, routePath: 'default' } }];",
            ]
        )
        return self._base(
            node, name, "n8n-nodes-base.function", {"functionCode": "\n".join(lines)}
        )

    def _validator(self, node: ValidatorNode, name: str) -> N8nNode:
        lines: List[str] = [
            "// Validation Logic",
            "const input = items[0].json;",
            "const validationResults = [];",
            "",
        ]
        for index, rule in enumerate(node.data.validationRules):
            expression = self.transpiler.translate_validation_rule(rule)
            literal = js_string(rule)
            lines.extend(
                [
                    f"// Rule {index + 1}: {_comment(rule)}",
                    "try {",
                    f"  const result = {expression};",
                    f"  validationResults.push({{ rule: {literal}, passed: Boolean(result) }});",
                    "} catch (error) {",
                    f"  validationResults.push({{ rule: {literal}, passed: false, error: error.message }});",
                    "}",
                    "",
                ]
            )
        lines.extend(
            [
                "const allPassed = validationResults.every(r => r.passed);",
                "",
                "return [{",
                "  json: {",
                "    ...input,",
                "    validation: {",
                "      passed: allPassed,",
                "      results: validationResults",
                "    }",
                "  }",
                "}];",
            ]
        )
        return self._base(
            node, name, "n8n-nodes-base.function", {"functionCode": "\n".join(lines)}
        )

    def _integration(self, node: IntegrationNode, name: str) -> N8nNode:
        data = node.data
        extras = data.model_extra or {}
        kind = (data.integrationType or "").strip().lower()

        if kind in MAIL_KINDS:
            return self._base(
                node,
                name,
                "n8n-nodes-base.gmail",
                {
                    "operation": "getAll",
                    "returnAll": False,
                    "limit": _mail_limit(extras.get("limit"), node.id),
                    "filters": {"query": extras.get("query") or DEFAULT_MAIL_QUERY},
                },
                credential_ref("gmail", self.org_id),
            )

        if kind in CHAT_KINDS:
            return self._base(
                node,
                name,
                "n8n-nodes-base.slack",
                {
                    "operation": "postMessage",
                    "channel": data.channel or DEFAULT_CHAT_CHANNEL,
                    "text": '{{ $json.message || "Workflow notification" }}',
                    "attachments": [],
                },
                credential_ref("slack", self.org_id),
            )

        if kind in WEBHOOK_KINDS or data.webhookUrl:
            return self._base(
                node,
                name,
                "n8n-nodes-base.httpRequest",
                {
                    "url": data.webhookUrl or "",
                    "method": "POST",
                    "sendBody": True,
                    "bodyContentType": "json",
                    "jsonBody": "{{ JSON.stringify($json) }}",
                },
            )

        logger.warning(
            "Integration node %s: unknown integration type %r; compiling passthrough",
            node.id,
            data.integrationType,
        )
        code = "\n".join(
            [
                "// Generic Integration",
                f"console.log('Integration node:', {js_string(data.integrationType or '')});",
                "return items;",
            ]
        )
        return self._base(node, name, "n8n-nodes-base.function", {"functionCode": code})
