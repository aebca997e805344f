"""CLI entrypoint for hearth."""

from __future__ import annotations

import json
import os
from typing import List, Optional

import requests
import typer

app = typer.Typer(name="hearth", help="hearth command-line interface")
providers_app = typer.Typer(name="providers", help="Inspect chat/embedding endpoints")
memories_app = typer.Typer(name="memories", help="Manage remembered facts")
tags_app = typer.Typer(name="tags", help="Review and apply suggested tags")
app.add_typer(providers_app, name="providers")
app.add_typer(memories_app, name="memories")
app.add_typer(tags_app, name="tags")

DEFAULT_HOST = "http://127.0.0.1:5173"
REQUEST_TIMEOUT_S = 300


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("HEARTH_HOST")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    try:
        resp = requests.request(method, url, timeout=REQUEST_TIMEOUT_S, **kwargs)
    except requests.RequestException as exc:
        typer.echo(f"Could not reach {base}: {exc}", err=True)
        raise typer.Exit(code=1)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _echo_json(payload: object) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@app.command()
def index(
    force: bool = typer.Option(False, "--force", help="Re-embed every document"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Index every changed document."""
    resp = _request("POST", "/index", host=host, json={"force": force})
    summary = resp.json()
    typer.echo(summary["message"])
    if summary.get("aborted"):
        raise typer.Exit(code=2)


@app.command()
def status(host: Optional[str] = typer.Option(None, "--host", help="Override backend host")) -> None:
    """Show indexing state and store statistics."""
    state = _request("GET", "/index/status", host=host).json()
    stats = _request("GET", "/index/stats", host=host).json()
    _echo_json({"status": state, "stats": stats})


@app.command()
def stop(host: Optional[str] = typer.Option(None, "--host", help="Override backend host")) -> None:
    """Stop the active indexing run and clear the queue."""
    _echo_json(_request("POST", "/index/stop", host=host).json())


@app.command("reset-circuit")
def reset_circuit(host: Optional[str] = typer.Option(None, "--host", help="Override backend host")) -> None:
    """Re-enable indexing after repeated connection failures."""
    _echo_json(_request("POST", "/index/reset-circuit", host=host).json())


@app.command()
def chat(
    query: str = typer.Argument(..., help="Question to ask"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Ask a question grounded in your notes."""
    payload = _request("POST", "/chat", host=host, json={"query": query}).json()
    typer.echo(payload["content"])
    if payload.get("context_sources"):
        typer.echo("\nSources:")
        for source in payload["context_sources"]:
            typer.echo(f"  - {source}")


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    k: Optional[int] = typer.Option(None, "--k", help="Number of results to return"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Semantic search over indexed chunks."""
    body: dict[str, object] = {"query": query}
    if k is not None:
        body["k"] = k
    _echo_json(_request("POST", "/search", host=host, json=body).json())


@app.command()
def similar(
    path: str = typer.Argument(..., help="Corpus-relative note path"),
    limit: int = typer.Option(5, "--limit", help="Number of notes to return"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """List notes similar to PATH."""
    resp = _request("GET", "/similar", host=host, params={"path": path, "limit": limit})
    for hit in resp.json()["results"]:
        typer.echo(f"{hit['score']:.3f}  {hit['document_path']}")


@app.command()
def confirm(
    confirmation_id: str = typer.Argument(..., help="Pending confirmation id"),
    approve: bool = typer.Option(..., "--yes/--no", help="Approve or reject the tool call"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Answer a pending destructive tool call."""
    _echo_json(_request("POST", f"/tools/confirm/{confirmation_id}", host=host, json={"approved": approve}).json())


@app.command()
def pending(host: Optional[str] = typer.Option(None, "--host", help="Override backend host")) -> None:
    """List tool calls waiting for confirmation."""
    _echo_json(_request("GET", "/tools/pending", host=host).json())


@providers_app.command("health")
def providers_health(host: Optional[str] = typer.Option(None, "--host", help="Override backend host")) -> None:
    """Check every configured endpoint."""
    _echo_json(_request("GET", "/providers/health", host=host).json())


@providers_app.command("models")
def providers_models(host: Optional[str] = typer.Option(None, "--host", help="Override backend host")) -> None:
    """List models served by the active endpoint."""
    for model in _request("GET", "/providers/models", host=host).json()["models"]:
        typer.echo(model)


@memories_app.command("list")
def list_memories(host: Optional[str] = typer.Option(None, "--host", help="Override backend host")) -> None:
    """List stored memories."""
    for memory in _request("GET", "/memories", host=host).json():
        typer.echo(f"{memory['id']}  {memory['content']}")


@memories_app.command("delete")
def delete_memory(
    memory_id: str = typer.Argument(..., help="Memory identifier"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Forget a stored memory."""
    _echo_json(_request("DELETE", f"/memories/{memory_id}", host=host).json())


@tags_app.command("suggestions")
def tag_suggestions(host: Optional[str] = typer.Option(None, "--host", help="Override backend host")) -> None:
    """List tag suggestions waiting for review."""
    suggestions = _request("GET", "/tags/suggestions", host=host).json()["suggestions"]
    for path, items in suggestions.items():
        tags = ", ".join(f"{item['tag']} ({item['confidence']:.2f})" for item in items)
        typer.echo(f"{path}: {tags}")


@tags_app.command("suggest")
def suggest_tags(
    path: str = typer.Argument(..., help="Corpus-relative note path"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Ask the model for tags for PATH now."""
    for item in _request("POST", "/tags/suggest", host=host, json={"path": path}).json():
        typer.echo(f"{item['confidence']:.2f}  {item['tag']}")


@tags_app.command("apply")
def apply_tags(
    path: str = typer.Argument(..., help="Corpus-relative note path"),
    tags: List[str] = typer.Argument(..., help="Tags to add"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Add TAGS to the frontmatter of PATH."""
    resp = _request("POST", "/tags/apply", host=host, json={"path": path, "tags": tags})
    typer.echo(f"{path}: {', '.join(resp.json()['tags'])}")


@app.command()
def serve(
    bind: str = typer.Option("127.0.0.1", "--bind", help="Interface to listen on"),
    port: int = typer.Option(5173, "--port", help="Port to listen on"),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("hearth.app:app", host=bind, port=port)


if __name__ == "__main__":
    app()
