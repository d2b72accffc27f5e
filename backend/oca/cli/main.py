"""CLI entrypoint for OCA."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import List, Optional

import requests
import typer

app = typer.Typer(name="oca", help="OCA course assistant command-line interface")
sessions_app = typer.Typer(name="sessions", help="Inspect tutoring sessions")
app.add_typer(sessions_app, name="sessions")

DEFAULT_HOST = "http://127.0.0.1:3000"


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("OCA_API_URL")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    kwargs.setdefault("timeout", 120)
    resp = requests.request(method, url, **kwargs)
    if not resp.ok:
        try:
            detail = resp.json().get("error", resp.text)
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _print_json(payload: object) -> None:
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (defaults to config)"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port (defaults to config)"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from oca.core.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "oca.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_config=None,
    )


@app.command()
def ingest(
    paths: List[Path] = typer.Argument(..., help="Files or directories to ingest"),
    section: Optional[str] = typer.Option(None, "--section", help="Section label for every chunk"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Chunk, embed and store documents (paths are read by the server)."""
    body: dict[str, object] = {"paths": [str(path.expanduser().resolve()) for path in paths]}
    if section:
        body["section"] = section
    resp = _request("POST", "/api/documents/ingest", host=host, json=body, timeout=None)
    result = resp.json()
    _print_json(result)
    if result.get("failed"):
        raise typer.Exit(code=1)


@app.command()
def chat(
    message: str = typer.Argument(..., help="Question for the tutor"),
    session: Optional[str] = typer.Option(None, "--session", help="Continue an existing session"),
    student: Optional[str] = typer.Option(None, "--student", help="Student identifier"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Stream a tutoring answer to stdout."""
    body: dict[str, object] = {"message": message}
    if session:
        body["sessionId"] = session
    if student:
        body["studentId"] = student
    resp = _request("POST", "/api/chat", host=host, json=body, stream=True)
    marker = resp.headers.get("X-Stream-End-Marker") or ""
    # Hold back enough text to recognise a marker split across reads.
    pending = ""
    for piece in resp.iter_content(chunk_size=None, decode_unicode=True):
        if not piece:
            continue
        pending += piece
        if len(pending) > len(marker):
            typer.echo(pending[: len(pending) - len(marker)], nl=False)
            pending = pending[len(pending) - len(marker) :]
    completed = bool(marker) and pending == marker
    if not completed:
        typer.echo(pending, nl=False)
    typer.echo()
    session_id = resp.headers.get("X-Session-Id")
    if session_id:
        typer.echo(f"[session {session_id}]", err=True)
    if marker and not completed:
        typer.echo("Response was truncated before completion", err=True)
        raise typer.Exit(code=1)


@app.command()
def search(
    query: str = typer.Argument(..., help="What to look up in the course material"),
    max_results: int = typer.Option(5, "--max-results", "-k", help="Number of sources to retrieve"),
    session: Optional[str] = typer.Option(None, "--session", help="Session to record the search under"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Summarize course material for a query."""
    body: dict[str, object] = {"query": query, "maxResults": max_results}
    if session:
        body["sessionId"] = session
    resp = _request("POST", "/api/search", host=host, json=body)
    _print_json(resp.json())


@sessions_app.command("list")
def list_sessions(
    student_id: str = typer.Argument(..., help="Student identifier"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """List a student's sessions, newest first."""
    resp = _request("GET", f"/api/sessions/student/{student_id}", host=host)
    _print_json(resp.json())


@sessions_app.command("show")
def show_session(
    session_id: str = typer.Argument(..., help="Session identifier"),
    history: bool = typer.Option(False, "--history", help="Include archived interactions"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show a session and optionally its interactions."""
    session = _request("GET", f"/api/sessions/{session_id}", host=host).json()
    if history:
        params = {"studentId": session["studentId"], "sessionId": session_id}
        session["interactions"] = _request("GET", "/api/interactions", host=host, params=params).json()["interactions"]
    _print_json(session)


if __name__ == "__main__":
    app()
