import json

import pytest

from n8n_prompt_chains.errors import UnsupportedNodeType
from n8n_prompt_chains.models.graph import (
    IntegrationNode,
    PromptNode,
    RouterNode,
    ValidatorNode,
)
from n8n_prompt_chains.translation.nodes import DEFAULT_MODEL, NodeCompiler


def _prompt(**data):
    return PromptNode.model_validate({"id": "p1", "position": {"x": 10, "y": 20}, "data": data})


def test_openai_prompt_node():
    node = NodeCompiler().compile(_prompt(label="Draft", prompt="Hello {{input}}", model="gpt-4", maxTokens=256))
    assert node.type == "n8n-nodes-base.httpRequest"
    assert node.name == "Draft"
    assert node.position == (10, 20)
    params = node.parameters
    assert params["url"] == "https://api.openai.com/v1/chat/completions"
    body = json.loads(params["jsonBody"])
    assert body == {
        "model": "gpt-4",
        "messages": [{"role": "user", "content": "Hello {{input}}"}],
        "temperature": 0.7,
        "max_tokens": 256,
    }
    assert node.credentials == {"openAiApi": {"name": "openai_account"}}


def test_anthropic_prompt_node_with_org_credentials():
    node = NodeCompiler(org_id="org-a").compile(_prompt(model="claude-3-haiku", temperature=0))
    params = node.parameters
    assert params["url"] == "https://api.anthropic.com/v1/messages"
    headers = {h["name"]: h["value"] for h in params["headerParameters"]["parameters"]}
    assert headers["anthropic-version"] == "2023-06-01"
    body = json.loads(params["jsonBody"])
    assert body["model"] == "claude-3-haiku"
    assert body["temperature"] == 0
    assert body["max_tokens"] == 1000
    assert node.credentials == {"anthropicApi": {"name": "org_org-a_anthropic"}}


def test_unknown_model_falls_back_to_default():
    node = NodeCompiler().compile(_prompt(model="llama-3"))
    body = json.loads(node.parameters["jsonBody"])
    assert body["model"] == DEFAULT_MODEL
    assert body["messages"][0]["content"] == "{{ $json.input }}"


def test_router_first_match_order_and_default():
    node = NodeCompiler().compile(
        RouterNode.model_validate(
            {"id": "r1", "data": {"conditions": ['sentiment is "negative"', "urgency greater than 3"]}}
        )
    )
    code = node.parameters["functionCode"]
    assert node.type == "n8n-nodes-base.function"
    assert node.name == "r1"
    first = code.index("if (input.sentiment === \"negative\")")
    second = code.index("if (input.urgency > 3)")
    default = code.index("routePath: 'default'")
    assert first < second < default
    assert "routePath: '0'" in code[first:second]
    assert "routePath: '1'" in code[second:default]


def test_validator_with_zero_rules_passes():
    node = NodeCompiler().compile(ValidatorNode.model_validate({"id": "v1", "data": {}}))
    code = node.parameters["functionCode"]
    assert "validationResults.push" not in code
    assert "const allPassed = validationResults.every(r => r.passed);" in code


def test_validator_rules_are_isolated():
    node = NodeCompiler().compile(
        ValidatorNode.model_validate(
            {"id": "v1", "data": {"validationRules": ["not empty", 'contains "ok"']}}
        )
    )
    code = node.parameters["functionCode"]
    assert code.count("try {") == 2
    assert code.count("} catch (error) {") == 2
    assert 'rule: "not empty"' in code
    assert 'input.content.includes("ok")' in code


@pytest.mark.parametrize(
    "data,node_type,credential",
    [
        ({"integrationType": "gmail"}, "n8n-nodes-base.gmail", "gmailOAuth2"),
        ({"integrationType": "email"}, "n8n-nodes-base.gmail", "gmailOAuth2"),
        ({"integrationType": "slack", "channel": "#alerts"}, "n8n-nodes-base.slack", "slackOAuth2"),
        ({"integrationType": "webhook", "webhookUrl": "https://hooks.test/x"}, "n8n-nodes-base.httpRequest", None),
        ({"integrationType": "zapier", "webhookUrl": "https://hooks.test/y"}, "n8n-nodes-base.httpRequest", None),
        ({"integrationType": "twitter"}, "n8n-nodes-base.function", None),
    ],
)
def test_integration_kinds(data, node_type, credential):
    node = NodeCompiler().compile(IntegrationNode.model_validate({"id": "i1", "data": data}))
    assert node.type == node_type
    if credential:
        assert credential in node.credentials
    else:
        assert node.credentials is None


def test_slack_channel_and_gmail_defaults():
    compiler = NodeCompiler()
    slack = compiler.compile(IntegrationNode.model_validate({"id": "s", "data": {"integrationType": "chat"}}))
    assert slack.parameters["channel"] == "#general"
    gmail = compiler.compile(IntegrationNode.model_validate({"id": "g", "data": {"integrationType": "gmail"}}))
    assert gmail.parameters["limit"] == 50
    assert gmail.parameters["filters"] == {"query": "is:unread newer_than:1d"}


@pytest.mark.parametrize("limit, expected", [("fifty", 50), ("20", 20), (10, 10), (0, 50), (None, 50)])
def test_gmail_limit_falls_back_when_unusable(limit, expected):
    node = NodeCompiler().compile(
        IntegrationNode.model_validate({"id": "g", "data": {"integrationType": "gmail", "limit": limit}})
    )
    assert node.parameters["limit"] == expected


def test_unknown_integration_kind_passthrough_logs_warning(caplog):
    with caplog.at_level("WARNING"):
        node = NodeCompiler().compile(
            IntegrationNode.model_validate({"id": "i9", "data": {"integrationType": "fax"}})
        )
    assert node.parameters["functionCode"].endswith("return items;")
    assert "unknown integration type" in caplog.text


def test_non_graph_node_raises():
    class Stray:
        id = "x"
        type = "loop"

    with pytest.raises(UnsupportedNodeType):
        NodeCompiler().compile(Stray())
