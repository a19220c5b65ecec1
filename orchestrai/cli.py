"""Command line interface for submitting and following orchestrai workflows."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer
from pydantic import ValidationError as PydanticValidationError

from orchestrai import HistoryStore, WorkflowController, get_client, load_config
from orchestrai.context import ContextConfig, highlight
from orchestrai.contracts import Workflow, WorkflowMode, WorkflowStatus, WorkflowSummary
from orchestrai.controller import WorkflowView
from orchestrai.errors import BackendError, ValidationError

app = typer.Typer(help="CLI for orchestrai workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflows")
context_app = typer.Typer(help="Admin context search preview")

app.add_typer(workflow_app, name="workflow")
app.add_typer(context_app, name="context")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, help="Logging level, defaults to the configured level"
    ),
) -> None:
    """orchestrai CLI entry point."""
    level = (log_level or load_config().log_level).upper()
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


class _ViewPrinter:
    """Observer echoing new log lines and status changes."""

    def __init__(self) -> None:
        self._printed = 0
        self._last: Optional[tuple] = None
        self._degraded: Optional[str] = None

    def __call__(self, view: WorkflowView) -> None:
        workflow = view.workflow
        if workflow is None:
            return
        for entry in workflow.log[self._printed :]:
            typer.echo(entry.format())
        self._printed = len(workflow.log)

        state = (workflow.status, workflow.progress)
        if state != self._last:
            self._last = state
            typer.echo(f"Status: {workflow.status.value} ({workflow.progress}%)")

        if view.degraded != self._degraded:
            self._degraded = view.degraded
            if view.degraded:
                typer.secho(f"Connection degraded: {view.degraded}", fg=typer.colors.YELLOW)


def _echo_outcome(workflow: Optional[Workflow]) -> None:
    if workflow is None:
        return
    if workflow.status is WorkflowStatus.FAILED:
        typer.secho(
            f"Workflow {workflow.id} failed: {workflow.error or 'unknown error'}",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)
    if workflow.status is WorkflowStatus.COMPLETED:
        typer.secho(f"Workflow {workflow.id} completed", fg=typer.colors.GREEN)


async def _submit(
    source_url: str, mode: WorkflowMode, prompt: Optional[str], watch: bool
) -> Workflow:
    config = load_config()
    async with get_client(config) as client:
        controller = WorkflowController(client, config)
        if watch:
            controller.subscribe(_ViewPrinter())
        try:
            workflow = await controller.submit(source_url, mode, prompt)
            typer.echo(f"Workflow started: {workflow.id}")
            if watch:
                workflow = await controller.wait() or workflow
        finally:
            await controller.close()
    return workflow


async def _watch(workflow_id: str) -> Optional[Workflow]:
    config = load_config()
    async with get_client(config) as client:
        history = HistoryStore(client)
        await history.refresh()
        summary = history.get(workflow_id)
        if summary is None:
            return None

        controller = WorkflowController(client, config)
        controller.subscribe(_ViewPrinter())
        try:
            await controller.select_active(summary)
            return await controller.wait()
        finally:
            await controller.close()


async def _list() -> tuple[WorkflowSummary, ...]:
    async with get_client() as client:
        return await HistoryStore(client).refresh()


@workflow_app.command("submit")
def workflow_submit(
    source_url: str,
    prompt: Optional[str] = typer.Option(None, help="Task prompt for the agents"),
    mode: Optional[WorkflowMode] = typer.Option(
        None,
        case_sensitive=False,
        help="Workflow mode; prompt-driven when a prompt is given",
    ),
    watch: bool = typer.Option(True, help="Follow progress until the workflow ends"),
) -> None:
    """
    Submit a repository and start a new workflow.

    The URL is validated locally before the backend is contacted. With
    --watch (the default) progress and log lines are printed until the
    workflow completes or fails.

    Example:
        orchestrai workflow submit https://github.com/acme/widget
        orchestrai workflow submit https://github.com/acme/widget --prompt "Add CI"
    """
    if mode is None:
        mode = WorkflowMode.PROMPT_DRIVEN if prompt else WorkflowMode.SELF_CONTAINED
    try:
        workflow = asyncio.run(_submit(source_url, mode, prompt, watch))
    except ValidationError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=2)
    except BackendError as e:
        typer.secho(f"Failed to start workflow: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if watch:
        _echo_outcome(workflow)


@workflow_app.command("watch")
def workflow_watch(workflow_id: str) -> None:
    """
    Follow an existing workflow.

    Finished workflows are shown as they ended; running ones are followed
    until they complete or fail.
    """
    try:
        workflow = asyncio.run(_watch(workflow_id))
    except BackendError as e:
        typer.secho(f"Backend error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if workflow is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    _echo_outcome(workflow)


@workflow_app.command("list")
def workflow_list() -> None:
    """
    List workflows, newest first.

    Example:
        orchestrai workflow list
        # Output: wf-2    running    40%    acme/widget    self-contained
        #         wf-1    completed  100%   acme/gadget    prompt-driven
    """
    try:
        workflows = asyncio.run(_list())
    except BackendError as e:
        typer.secho(f"Backend error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(
            f"{wf.id}\t{wf.status.value}\t{wf.progress}%\t{wf.repo_name}\t{wf.mode.value}"
        )


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """Show details and logs for a single workflow."""
    try:
        workflows = asyncio.run(_list())
    except BackendError as e:
        typer.secho(f"Backend error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    summary = next((wf for wf in workflows if wf.id == workflow_id), None)
    if summary is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)

    typer.echo(f"Workflow {summary.id}: {summary.status.value} ({summary.progress}%)")
    typer.echo(f"Repository: {summary.source_url}")
    typer.echo(f"Mode: {summary.mode.value}")
    if summary.prompt:
        typer.echo(f"Task: {summary.prompt}")
    typer.echo(f"Created: {summary.created_at.isoformat()}")
    if summary.error:
        typer.secho(f"Error: {summary.error}", fg=typer.colors.RED)
    for line in summary.logs:
        typer.echo(f"  {line}")


def _render_highlight(text: str, query: str) -> str:
    return "".join(
        typer.style(segment, fg=typer.colors.YELLOW, bold=True) if matched else segment
        for segment, matched in highlight(text, query)
    )


@context_app.command("search")
def context_search(
    query: str,
    limit: int = typer.Option(10, min=1, help="Maximum number of results"),
) -> None:
    """
    Preview which document snippets the backend retrieves for a query.

    Example:
        orchestrai context search "deployment pipeline" --limit 5
    """
    if not query.strip():
        typer.secho("Query must not be empty", fg=typer.colors.RED)
        raise typer.Exit(code=2)

    async def _search():
        async with get_client() as client:
            return await client.search_context(query, limit=limit)

    try:
        results = asyncio.run(_search())
    except BackendError as e:
        typer.secho(f"Backend error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    if not results:
        typer.echo("No matching context found")
        return
    for rank, result in enumerate(results, start=1):
        typer.echo(f"{rank}. {result.filename} (similarity {result.similarity:.2f})")
        typer.echo(f"   {_render_highlight(result.content, query)}")


@context_app.command("config")
def context_config(
    chunk_size: Optional[int] = typer.Option(None, help="Characters per chunk"),
    chunk_overlap: Optional[int] = typer.Option(None, help="Overlap between chunks"),
    similarity_threshold: Optional[float] = typer.Option(
        None, help="Minimum similarity for a result"
    ),
    max_results: Optional[int] = typer.Option(None, help="Results per search"),
) -> None:
    """Show the backend's context settings, or update them when options are given."""
    changes = {
        key: value
        for key, value in {
            "chunk_size": chunk_size,
            "chunk_overlap": chunk_overlap,
            "similarity_threshold": similarity_threshold,
            "max_results": max_results,
        }.items()
        if value is not None
    }

    async def _run() -> ContextConfig:
        async with get_client() as client:
            current = await client.get_context_config()
            if not changes:
                return current
            updated = ContextConfig(**{**current.model_dump(), **changes})
            return await client.update_context_config(updated)

    try:
        config = asyncio.run(_run())
    except PydanticValidationError as e:
        typer.secho(f"Invalid context configuration: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=2)
    except BackendError as e:
        typer.secho(f"Backend error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    if changes:
        typer.echo("Configuration updated")
    for key, value in config.model_dump().items():
        typer.echo(f"{key}: {value}")


@app.command("health")
def health() -> None:
    """Check that the backend is reachable."""

    async def _probe():
        async with get_client() as client:
            return await client.health()

    result = asyncio.run(_probe())
    if result["status"] == "healthy":
        typer.secho("Backend healthy", fg=typer.colors.GREEN)
        return
    typer.secho(f"Backend unhealthy: {result.get('error')}", fg=typer.colors.RED)
    raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
