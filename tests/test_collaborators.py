# tests/test_collaborators.py
"""
Unit tests for data collaborators.
"""
import asyncio
import threading
import time
import pytest
from unittest.mock import MagicMock, patch

import requests

from app.services.collaborators import (
    CallableCollaborator,
    CollaboratorError,
    HttpCollaborator,
    ScriptCollaborator,
    create_collaborator,
    query_collaborator,
)


@pytest.fixture
def scripts_dir(tmp_path):
    directory = tmp_path / "scripts"
    directory.mkdir()
    (directory / "get-apy.sh").write_text('echo \'{"apy": "4.2"}\'\n')
    (directory / "echo-args.sh").write_text('echo "$@"\n')
    (directory / "fail.sh").write_text('echo "rpc down" >&2\nexit 3\n')
    (directory / "silent.sh").write_text('true\n')
    (directory / "slow.sh").write_text('exec sleep 5\n')
    return directory


class TestScriptCollaborator:
    """Test shell script collaborators."""

    def test_runs_script(self, scripts_dir):
        collaborator = ScriptCollaborator(scripts_dir=str(scripts_dir), timeout=5)
        assert collaborator.run_query("get-apy") == '{"apy": "4.2"}'

    def test_passes_arguments(self, scripts_dir):
        collaborator = ScriptCollaborator(scripts_dir=str(scripts_dir), timeout=5)
        assert collaborator.run_query("echo-args", ["0xabc", "7"]) == "0xabc 7"

    def test_missing_script(self, scripts_dir):
        collaborator = ScriptCollaborator(scripts_dir=str(scripts_dir), timeout=5)
        with pytest.raises(CollaboratorError, match="not found"):
            collaborator.run_query("get-nothing")

    def test_rejects_path_traversal(self, scripts_dir):
        collaborator = ScriptCollaborator(scripts_dir=str(scripts_dir), timeout=5)
        with pytest.raises(CollaboratorError, match="Invalid query name"):
            collaborator.run_query("../outside")

    def test_non_zero_exit(self, scripts_dir):
        collaborator = ScriptCollaborator(scripts_dir=str(scripts_dir), timeout=5)
        with pytest.raises(CollaboratorError, match="exited with code 3: rpc down"):
            collaborator.run_query("fail")

    def test_empty_output(self, scripts_dir):
        collaborator = ScriptCollaborator(scripts_dir=str(scripts_dir), timeout=5)
        with pytest.raises(CollaboratorError, match="no output"):
            collaborator.run_query("silent")

    def test_timeout(self, scripts_dir):
        collaborator = ScriptCollaborator(scripts_dir=str(scripts_dir), timeout=0.2)
        with pytest.raises(CollaboratorError, match="timed out"):
            collaborator.run_query("slow")

    @patch("app.services.collaborators.settings")
    def test_defaults_from_config(self, mock_settings):
        mock_settings.COLLABORATOR_SCRIPTS_DIR = "/opt/scripts"
        mock_settings.COLLABORATOR_TIMEOUT_SECONDS = 12
        collaborator = ScriptCollaborator()
        assert str(collaborator.scripts_dir) == "/opt/scripts"
        assert collaborator.timeout == 12


class TestHttpCollaborator:
    """Test remote reader collaborators."""

    def make_session(self, text="", status_error=None, get_error=None):
        session = MagicMock(spec=requests.Session)
        if get_error is not None:
            session.get.side_effect = get_error
            return session
        response = MagicMock()
        response.text = text
        if status_error is not None:
            response.raise_for_status.side_effect = status_error
        session.get.return_value = response
        return session

    def test_builds_url_from_query(self):
        session = self.make_session(text='{"ok": true}\n')
        collaborator = HttpCollaborator(base_url="http://reader:8000/api", timeout=3, session=session)

        assert collaborator.run_query("get-balance", ["0xabc"]) == '{"ok": true}'
        session.get.assert_called_once_with("http://reader:8000/api/get-balance/0xabc", timeout=3)

    def test_arguments_are_quoted(self):
        session = self.make_session(text="ok")
        collaborator = HttpCollaborator(base_url="http://reader", timeout=3, session=session)
        collaborator.run_query("get-stream", ["../1"])
        session.get.assert_called_once_with("http://reader/get-stream/..%2F1", timeout=3)

    def test_request_failure(self):
        session = self.make_session(get_error=requests.ConnectionError("refused"))
        collaborator = HttpCollaborator(base_url="http://reader", session=session)
        with pytest.raises(CollaboratorError, match="refused"):
            collaborator.run_query("get-apy")

    def test_http_error_status(self):
        session = self.make_session(text="boom", status_error=requests.HTTPError("502 Bad Gateway"))
        collaborator = HttpCollaborator(base_url="http://reader", session=session)
        with pytest.raises(CollaboratorError, match="502"):
            collaborator.run_query("get-apy")

    def test_empty_response(self):
        session = self.make_session(text="  ")
        collaborator = HttpCollaborator(base_url="http://reader", session=session)
        with pytest.raises(CollaboratorError, match="Empty response"):
            collaborator.run_query("get-apy")

    @patch("app.services.collaborators.settings")
    def test_requires_base_url(self, mock_settings):
        mock_settings.COLLABORATOR_BASE_URL = None
        with pytest.raises(ValueError):
            HttpCollaborator()


class TestCallableCollaborator:
    """Test in-process collaborators."""

    def test_dispatches_to_handler(self):
        collaborator = CallableCollaborator({"get-stream": lambda stream_id: f"stream {stream_id}"})
        assert collaborator.run_query("get-stream", ["4"]) == "stream 4"

    def test_register(self):
        collaborator = CallableCollaborator()
        collaborator.register("get-apy", lambda: "4.2")
        assert collaborator.run_query("get-apy") == "4.2"

    def test_unknown_query(self):
        with pytest.raises(CollaboratorError, match="Unknown query"):
            CallableCollaborator().run_query("get-apy")

    def test_handler_exception_wrapped(self):
        def broken():
            raise KeyError("vault")

        collaborator = CallableCollaborator({"get-apy": broken})
        with pytest.raises(CollaboratorError, match="get-apy failed"):
            collaborator.run_query("get-apy")


class TestCreateCollaborator:
    """Test backend selection."""

    def test_script_backend(self):
        assert isinstance(create_collaborator("script"), ScriptCollaborator)

    @patch("app.services.collaborators.settings")
    def test_http_backend(self, mock_settings):
        mock_settings.COLLABORATOR_BASE_URL = "http://reader"
        mock_settings.COLLABORATOR_TIMEOUT_SECONDS = 5
        assert isinstance(create_collaborator("http"), HttpCollaborator)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_collaborator("carrier-pigeon")


class TestQueryCollaborator:
    """Test the async bounded call."""

    def test_returns_output(self):
        collaborator = CallableCollaborator({"get-apy": lambda: "4.2"})
        assert asyncio.run(query_collaborator(collaborator, "get-apy", [], timeout=1)) == "4.2"

    def test_timeout(self):
        collaborator = CallableCollaborator({"get-apy": lambda: time.sleep(0.5) or "late"})
        with pytest.raises(CollaboratorError, match="timed out"):
            asyncio.run(query_collaborator(collaborator, "get-apy", [], timeout=0.05))

    def test_timeout_does_not_wait_for_hung_handler(self):
        release = threading.Event()
        collaborator = CallableCollaborator({"hung": lambda: release.wait(5) and "late"})
        outcome = {}

        async def run():
            start = time.monotonic()
            with pytest.raises(CollaboratorError, match="timed out"):
                await query_collaborator(collaborator, "hung", [], timeout=0.05)
            outcome["elapsed"] = time.monotonic() - start
            # The worker thread is abandoned, not cancelled
            outcome["abandoned"] = not release.is_set()
            release.set()

        asyncio.run(run())
        assert outcome["elapsed"] < 1
        assert outcome["abandoned"] is True

    def test_does_not_block_event_loop(self):
        collaborator = CallableCollaborator({"slow": lambda: time.sleep(0.2) or "slow"})
        ticks = []

        async def ticker():
            for _ in range(5):
                ticks.append(time.monotonic())
                await asyncio.sleep(0.01)

        async def run():
            result, _ = await asyncio.gather(
                query_collaborator(collaborator, "slow", [], timeout=1),
                ticker(),
            )
            return result

        assert asyncio.run(run()) == "slow"
        assert len(ticks) == 5
        assert ticks[-1] - ticks[0] < 0.2
