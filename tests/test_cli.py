import json
from types import SimpleNamespace

import pytest
from typer.testing import CliRunner

from n8n_prompt_chains import __main__ as cli

runner = CliRunner()


@pytest.fixture
def chain_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "chain.json"
    path.write_text(
        json.dumps(
            {
                "id": "chain-1",
                "name": "Support triage",
                "org_id": "org-a",
                "config": {
                    "nodes": [{"id": "p", "type": "prompt", "data": {"prompt": "{{input}}", "model": "gpt-4"}}],
                    "edges": [],
                },
            }
        )
    )
    return path


@pytest.fixture
def patched_client(monkeypatch, fake_n8n):
    monkeypatch.setattr(cli, "N8nClient", SimpleNamespace(from_settings=lambda settings: fake_n8n.client()))
    return fake_n8n


def test_compile_prints_definition(chain_file):
    result = runner.invoke(cli.app, ["compile", str(chain_file)])
    assert result.exit_code == 0, result.output
    definition = json.loads(result.output)
    assert [n["id"] for n in definition["nodes"]] == ["trigger", "p"]
    assert definition["nodes"][1]["credentials"] == {"openAiApi": {"name": "org_org-a_openai"}}
    assert definition["connections"]["trigger"]["main"][0][0]["node"] == "p"


def test_compile_org_override(chain_file):
    result = runner.invoke(cli.app, ["compile", str(chain_file), "--org-id", "org-z"])
    assert result.exit_code == 0, result.output
    assert "org_org-z_openai" in result.output


def test_compile_unknown_node_type_fails(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"id": "c", "name": "n", "config": {"nodes": [{"id": "x", "type": "loop"}]}}))
    result = runner.invoke(cli.app, ["compile", str(path)])
    assert result.exit_code == 1
    assert "Unknown node type" in result.output


def test_deploy_reports_n8n_id(chain_file, patched_client):
    result = runner.invoke(cli.app, ["deploy", str(chain_file)])
    assert result.exit_code == 0, result.output
    assert "Deployed chain-1 -> n8n workflow 1" in result.output
    assert patched_client.workflows["1"]["active"] is True


def test_deploy_remote_error_exits_1(chain_file, patched_client):
    patched_client.failures[("GET", "/workflows")] = (401, "unauthorized")
    result = runner.invoke(cli.app, ["deploy", str(chain_file)])
    assert result.exit_code == 1
    assert "n8n API Error (401)" in result.output


def test_health_reports_workflow_count(patched_client):
    patched_client.add_workflow("one")
    result = runner.invoke(cli.app, ["health"])
    assert result.exit_code == 0, result.output
    report = json.loads(result.output)
    assert report["status"] == "ok"
    assert report["workflows"] == 1


def test_health_unreachable_exits_1(patched_client):
    patched_client.healthy = False
    result = runner.invoke(cli.app, ["health"])
    assert result.exit_code == 1
    assert json.loads(result.output)["status"] == "error"


def test_deploy_reserved_node_id_exits_cleanly(tmp_path, patched_client):
    path = tmp_path / "reserved.json"
    path.write_text(
        json.dumps(
            {
                "id": "chain-2",
                "name": "Reserved",
                "org_id": "org-a",
                "config": {"nodes": [{"id": "trigger", "type": "prompt", "data": {}}], "edges": []},
            }
        )
    )
    result = runner.invoke(cli.app, ["deploy", str(path)])
    assert result.exit_code == 1
    assert not isinstance(result.exception, ValueError)
    assert "Error: node id 'trigger' is reserved" in result.output
    assert patched_client.requests == []
