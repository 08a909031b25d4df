# app/services/collaborators.py
"""
Data collaborators that produce the payloads behind priced routes.

A collaborator answers a named query (e.g. "get-apy", "get-balance <addr>")
with raw text, usually JSON, or raises CollaboratorError. The gateway never
depends on how the data is produced:

- ScriptCollaborator: runs <scripts_dir>/<name>.sh under bash
- HttpCollaborator: GETs <base_url>/<name>/<args...> from a remote reader
- CallableCollaborator: calls in-process functions

query_collaborator() runs any of them off the event loop with a hard timeout.
"""
import asyncio
import logging
import os
import subprocess
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence
from urllib.parse import quote, urljoin

import requests
from requests.exceptions import RequestException

from app.core.config import settings

logger = logging.getLogger(__name__)


class CollaboratorError(Exception):
    """A collaborator failed, timed out, or returned unusable output."""


class DataCollaborator:
    """Interface for data collaborators."""

    def run_query(self, name: str, args: Sequence[str] = ()) -> str:
        """
        Run a named query.

        Returns:
            Raw output text

        Raises:
            CollaboratorError: If the query fails
        """
        raise NotImplementedError


class ScriptCollaborator(DataCollaborator):
    """Runs shell scripts from a directory, one script per query name."""

    def __init__(self, scripts_dir: Optional[str] = None, timeout: Optional[float] = None):
        self.scripts_dir = Path(scripts_dir if scripts_dir is not None else settings.COLLABORATOR_SCRIPTS_DIR)
        self.timeout = timeout if timeout is not None else settings.COLLABORATOR_TIMEOUT_SECONDS

    def script_path(self, name: str) -> Path:
        script = self.scripts_dir / f"{name}.sh"
        # Query names come from route code, but never let one escape the directory
        if script.resolve().parent != self.scripts_dir.resolve():
            raise CollaboratorError(f"Invalid query name: {name}")
        return script

    def run_query(self, name: str, args: Sequence[str] = ()) -> str:
        script = self.script_path(name)
        if not script.is_file():
            raise CollaboratorError(f"Script not found: {script}")

        try:
            completed = subprocess.run(
                ["bash", str(script), *args],
                cwd=str(self.scripts_dir.parent),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=dict(os.environ),
                check=True
            )
        except subprocess.TimeoutExpired as e:
            raise CollaboratorError(f"{script.name} timed out after {self.timeout}s") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise CollaboratorError(f"{script.name} exited with code {e.returncode}: {stderr}") from e
        except OSError as e:
            raise CollaboratorError(f"Failed to run {script.name}: {e}") from e

        output = completed.stdout.strip()
        if not output:
            raise CollaboratorError(f"{script.name} produced no output")
        return output


class HttpCollaborator(DataCollaborator):
    """Fetches query results from a remote reader service."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None
    ):
        url = base_url if base_url is not None else settings.COLLABORATOR_BASE_URL
        if not url:
            raise ValueError("COLLABORATOR_BASE_URL is required for the http collaborator")
        self.base_url = url.rstrip("/") + "/"
        self.timeout = timeout if timeout is not None else settings.COLLABORATOR_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def run_query(self, name: str, args: Sequence[str] = ()) -> str:
        path = "/".join(quote(part, safe="") for part in (name, *args))
        api_url = urljoin(self.base_url, path)
        try:
            response = self.session.get(api_url, timeout=self.timeout)
            response.raise_for_status()
        except RequestException as e:
            raise CollaboratorError(f"Request to {api_url} failed: {e}") from e

        output = response.text.strip()
        if not output:
            raise CollaboratorError(f"Empty response from {api_url}")
        return output


class CallableCollaborator(DataCollaborator):
    """
    Dispatches queries to in-process functions.

    Handlers run in a worker thread and cannot be interrupted. A handler that
    hangs past the query timeout keeps its thread until it returns, so
    handlers doing I/O must bound it themselves.
    """

    def __init__(self, handlers: Optional[Dict[str, Callable[..., str]]] = None):
        self.handlers: Dict[str, Callable[..., str]] = dict(handlers or {})

    def register(self, name: str, handler: Callable[..., str]) -> None:
        self.handlers[name] = handler

    def run_query(self, name: str, args: Sequence[str] = ()) -> str:
        handler = self.handlers.get(name)
        if handler is None:
            raise CollaboratorError(f"Unknown query: {name}")
        try:
            return handler(*args)
        except CollaboratorError:
            raise
        except Exception as e:
            raise CollaboratorError(f"{name} failed: {e}") from e


def create_collaborator(backend: Optional[str] = None) -> DataCollaborator:
    """
    Build the configured collaborator.

    Args:
        backend: "script" or "http". Uses config if not provided.

    Raises:
        ValueError: If the backend is unknown
    """
    kind = backend if backend is not None else settings.COLLABORATOR_BACKEND
    if kind == "script":
        return ScriptCollaborator()
    if kind == "http":
        return HttpCollaborator()
    raise ValueError(f"Unknown collaborator backend: {kind}")


async def query_collaborator(
    collaborator: DataCollaborator,
    name: str,
    args: Sequence[str] = (),
    timeout: Optional[float] = None
) -> str:
    """
    Run a collaborator query in a worker thread with a hard timeout.

    On timeout the caller gets CollaboratorError immediately, but the worker
    thread is abandoned rather than cancelled. Script and HTTP collaborators
    carry their own timeouts, so their threads are released as well;
    in-process handlers are only released when they return.

    Raises:
        CollaboratorError: If the query fails or does not finish in time
    """
    limit = timeout if timeout is not None else settings.COLLABORATOR_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(collaborator.run_query, name, list(args)),
            timeout=limit
        )
    except asyncio.TimeoutError as e:
        raise CollaboratorError(f"{name} timed out after {limit}s") from e
