"""Main CLI entry point for n8n-prompt-chains.

Commands:
    compile         translate a prompt chain JSON file and print the n8n workflow
    deploy          compile + create/update + activate on n8n, print its id
    execute         run a stored prompt chain for a user and print the response
    status          print a persisted execution record
    health          report n8n reachability and workflow count
    push-credential propagate an org credential into n8n

Configuration comes from the environment and `.env` (see `config.Settings`).
Domain errors exit with status 1 and a one-line message on stderr.
"""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, NoReturn, Optional

import typer
from dotenv import find_dotenv, load_dotenv
from pydantic import ValidationError

# Load .env file if present (before any config access)
_env_file = find_dotenv(usecwd=True)
if _env_file:
    load_dotenv(_env_file)

from .config import Settings, get_settings
from .credentials import CredentialPropagator
from .db import PostgresStore
from .deployment import DeploymentCache
from .engine_client import N8nClient
from .errors import PromptChainError
from .executor import WorkflowExecutor
from .models.execution import ExecutionRequest
from .models.graph import Workflow, parse_workflow
from .telemetry import init_tracing, shutdown_tracing
from .translator import translate_workflow

app = typer.Typer(help="Compile, deploy and run prompt chains on n8n")


@app.callback()
def main() -> None:
    """Configure logging and tracing once per invocation."""
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL)
    init_tracing(settings)


def _echo_json(value: Any) -> None:
    typer.echo(json.dumps(value, indent=2, default=str))


def _fail(message: str) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


def _load_workflow(path: Path) -> Workflow:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        _fail(f"cannot read {path}: {e}")
    if not isinstance(raw, dict):
        _fail(f"{path} must contain a JSON object")
    try:
        return parse_workflow(raw)
    except PromptChainError as e:
        _fail(str(e))
    except ValidationError as e:
        _fail(f"invalid prompt chain in {path}: {e}")


def _parse_input(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError as e:
        _fail(f"--input is not valid JSON: {e}")
    if not isinstance(value, dict):
        _fail("--input must be a JSON object")
    return value


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except PromptChainError as e:
        _fail(str(e))
    finally:
        shutdown_tracing()


@app.command("compile")
def compile_cmd(
    workflow_file: Path = typer.Argument(..., help="Prompt chain JSON (id, name, config)"),
    org_id: Optional[str] = typer.Option(None, help="Org id for credential names (default: file's org_id)"),
) -> None:
    """Print the n8n workflow definition compiled from WORKFLOW_FILE."""
    workflow = _load_workflow(workflow_file)
    try:
        definition = translate_workflow(workflow, org_id)
    except PromptChainError as e:
        _fail(str(e))
    _echo_json(definition.to_payload())


@app.command()
def deploy(
    workflow_file: Path = typer.Argument(..., help="Prompt chain JSON (id, name, config)"),
    org_id: Optional[str] = typer.Option(None, help="Owning org id (default: file's org_id)"),
) -> None:
    """Deploy WORKFLOW_FILE to n8n (create or update, then activate)."""
    settings = get_settings()
    workflow = _load_workflow(workflow_file)

    async def _deploy() -> str:
        async with N8nClient.from_settings(settings) as client:
            cache = DeploymentCache(client, registry_path=settings.DEPLOYMENT_REGISTRY_FILE)
            return await cache.ensure_deployed(workflow, org_id or workflow.org_id)

    n8n_id = _run(_deploy())
    typer.echo(f"Deployed {workflow.id} -> n8n workflow {n8n_id}")


@app.command()
def execute(
    chain_id: str = typer.Argument(..., help="Prompt chain id"),
    org_id: str = typer.Option(..., help="Organization id"),
    user_id: str = typer.Option(..., help="Requesting user id"),
    input_json: Optional[str] = typer.Option(None, "--input", help="Input payload as a JSON object"),
) -> None:
    """Execute a stored prompt chain and print the execution response."""
    settings = get_settings()
    request = ExecutionRequest(
        chain_id=chain_id, org_id=org_id, user_id=user_id, input_data=_parse_input(input_json)
    )

    async def _execute() -> Dict[str, Any]:
        async with N8nClient.from_settings(settings) as client:
            executor = WorkflowExecutor.from_settings(settings, client, PostgresStore.from_settings(settings))
            response = await executor.execute(request)
            return response.model_dump(mode="json")

    _echo_json(_run(_execute()))


@app.command()
def status(
    execution_id: str = typer.Argument(..., help="Execution record id"),
    org_id: Optional[str] = typer.Option(None, help="Only show the record if it belongs to this org"),
) -> None:
    """Print the persisted state of an execution."""
    settings = get_settings()

    async def _status() -> Dict[str, Any]:
        async with N8nClient.from_settings(settings) as client:
            executor = WorkflowExecutor.from_settings(settings, client, PostgresStore.from_settings(settings))
            response = await executor.get_execution_status(execution_id, org_id)
            return response.model_dump(mode="json")

    _echo_json(_run(_status()))


async def _health(settings: Settings) -> Dict[str, Any]:
    async with N8nClient.from_settings(settings) as client:
        report: Dict[str, Any] = dict(await client.health_check())
        report["base_url"] = client.base
        if report["status"] == "ok":
            try:
                report["workflows"] = len(await client.list_workflows())
            except PromptChainError as e:
                report["workflows"] = None
                report["error"] = str(e)
        return report


@app.command()
def health() -> None:
    """Check n8n reachability; exit 1 when unhealthy."""
    report = _run(_health(get_settings()))
    _echo_json(report)
    if report.get("status") != "ok":
        raise typer.Exit(code=1)


@app.command("push-credential")
def push_credential(
    org_id: str = typer.Argument(..., help="Organization id"),
    service: str = typer.Argument(..., help="openai | anthropic | google | gmail | slack | twitter | linkedin"),
    secret: str = typer.Option(..., prompt=True, hide_input=True, help="API key or access token"),
) -> None:
    """Create or update the org's credential for SERVICE in n8n."""
    settings = get_settings()

    async def _push() -> bool:
        async with N8nClient.from_settings(settings) as client:
            propagator = CredentialPropagator.from_settings(settings, client)
            task = propagator.schedule_store(org_id, service, secret)
            return await task

    if not _run(_push()):
        _fail(f"credential for {service} was not propagated; see log for details")
    typer.echo(f"Propagated credential for org {org_id} service {service}")


if __name__ == "__main__":  # pragma: no cover
    app()
