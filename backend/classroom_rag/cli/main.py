"""CLI entrypoint for classroom-rag."""

from __future__ import annotations

import json
import mimetypes
import os
from pathlib import Path
from typing import Optional

import requests
import typer

app = typer.Typer(name="crag", help="classroom-rag command-line interface")
documents_app = typer.Typer(name="documents")
app.add_typer(documents_app, name="documents")

DEFAULT_HOST = "http://127.0.0.1:8000"

EXTENSION_MIME = {
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".doc": "application/msword",
    ".txt": "text/plain",
}


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip('/')
    env_host = os.environ.get("CRAG_HOST")
    if env_host:
        return env_host.rstrip('/')
    return DEFAULT_HOST


def _resolve_account(override: Optional[str]) -> str:
    account = override or os.environ.get("CRAG_ACCOUNT")
    if not account:
        typer.echo("An account id is required (--account or CRAG_ACCOUNT)", err=True)
        raise typer.Exit(code=2)
    return account


def _headers(account: Optional[str], admin_secret: Optional[str] = None) -> dict[str, str]:
    headers = {"X-Account-Id": _resolve_account(account)}
    secret = admin_secret or os.environ.get("CRAG_ADMIN_SECRET")
    if secret:
        headers["X-Admin-Secret"] = secret
    return headers


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    resp = requests.request(method, url, timeout=120, **kwargs)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _echo(payload: object) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def guess_mime(path: Path) -> str:
    mime = EXTENSION_MIME.get(path.suffix.lower())
    if mime:
        return mime
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


@app.command()
def upload(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Document to upload"),
    scope: str = typer.Option("user", "--scope", help="user or global"),
    ingest: bool = typer.Option(True, "--ingest/--no-ingest", help="Ingest right after uploading"),
    account: Optional[str] = typer.Option(None, "--account", help="Account id"),
    admin_secret: Optional[str] = typer.Option(None, "--admin-secret", help="Administrator secret"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Upload a document and optionally ingest it."""
    headers = _headers(account, admin_secret)
    payload = path.read_bytes()
    ticket = _request(
        "POST",
        "/documents/upload",
        host=host,
        headers=headers,
        json={"fileName": path.name, "mimeType": guess_mime(path), "fileSize": len(payload), "scope": scope},
    ).json()
    _request("PUT", ticket["uploadUrl"], host=host, data=payload)
    if not ingest:
        _echo(ticket)
        return
    resp = _request("POST", f"/documents/{ticket['documentId']}/ingest", host=host, headers=headers)
    _echo(resp.json())


@app.command()
def ingest(
    document_id: str = typer.Argument(..., help="Document identifier"),
    account: Optional[str] = typer.Option(None, "--account", help="Account id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Run (or re-run) ingestion for an uploaded document."""
    resp = _request("POST", f"/documents/{document_id}/ingest", host=host, headers=_headers(account))
    _echo(resp.json())


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question text"),
    mode: str = typer.Option("corpus_only", "--mode", help="corpus_only or corpus_plus_ai"),
    precise: bool = typer.Option(False, "--precise", help="Use the precise search mode"),
    conversation: Optional[str] = typer.Option(None, "--conversation", help="Continue a conversation"),
    document: Optional[str] = typer.Option(None, "--document", help="Restrict to one document"),
    top_k: Optional[int] = typer.Option(None, "--top-k", help="Number of sources (server default when omitted)"),
    account: Optional[str] = typer.Option(None, "--account", help="Account id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Ask a question against the reachable corpus."""
    body: dict[str, object] = {
        "message": question,
        "mode": mode,
        "searchMode": "precise" if precise else "fast",
    }
    if top_k is not None:
        body["topK"] = top_k
    if conversation:
        body["conversationId"] = conversation
    if document:
        body["documentId"] = document
    resp = _request("POST", "/chat", host=host, headers=_headers(account), json=body)
    _echo(resp.json())


@app.command()
def quota(
    account: Optional[str] = typer.Option(None, "--account", help="Account id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show token balance and budgets."""
    resp = _request("GET", "/quota", host=host, headers=_headers(account))
    _echo(resp.json())


@documents_app.command("list")
def list_documents(
    status: Optional[str] = typer.Option(None, "--status", help="Filter by status"),
    account: Optional[str] = typer.Option(None, "--account", help="Account id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """List documents reachable by the account."""
    params = {"status": status} if status else None
    resp = _request("GET", "/documents", host=host, headers=_headers(account), params=params)
    _echo(resp.json())


@documents_app.command("delete")
def delete_document(
    document_id: str = typer.Argument(..., help="Document identifier"),
    account: Optional[str] = typer.Option(None, "--account", help="Account id"),
    admin_secret: Optional[str] = typer.Option(None, "--admin-secret", help="Administrator secret"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Delete a document and release its storage."""
    resp = _request("DELETE", f"/documents/{document_id}", host=host, headers=_headers(account, admin_secret))
    _echo(resp.json())


if __name__ == "__main__":
    app()
