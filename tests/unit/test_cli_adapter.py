"""Tests for CopilotAdapter with a scripted runner."""

import pytest

from copilot_mcp.adapters import CopilotAdapter, OperationResult, handle_tool_errors
from copilot_mcp.adapters.cli_adapter import MIN_SALVAGE_CHARS, gather_limited
from copilot_mcp.cli_args import CopilotOptions
from copilot_mcp.errors import ClassifiedError, ErrorCategory
from copilot_mcp.runner import ProcessResult
from copilot_mcp.session import SessionStore
from copilot_mcp.workdir import WorkingDirectoryResolver


class FakeRunner:
    """Replays queued ProcessResults and records every call."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def __call__(self, command, args, **kwargs):
        self.calls.append({"command": command, "args": list(args), **kwargs})
        if kwargs.get("on_progress") and self.results and self.results[0].ok:
            kwargs["on_progress"](self.results[0].stdout)
        return self.results.pop(0)


def ok(stdout, **kwargs):
    return ProcessResult(ok=True, exit_code=0, stdout=stdout, **kwargs)


@pytest.fixture
def store():
    return SessionStore()


def make_adapter(store, *results, **kwargs):
    runner = FakeRunner(*results)
    return CopilotAdapter(store=store, runner=runner, **kwargs), runner


class TestExecute:
    @pytest.mark.asyncio
    async def test_success_records_history(self, store, tmp_path):
        adapter, runner = make_adapter(store, ok("The answer"))
        result = await adapter.execute("What is this?", CopilotOptions(working_dir=str(tmp_path)))

        assert result.output == "The answer"
        assert result.working_dir == str(tmp_path.resolve())
        assert result.partial is False

        session = store.get_session(result.session_id)
        assert [(h.role, h.content) for h in session.history] == [
            ("user", "What is this?"),
            ("assistant", "The answer"),
        ]

        call = runner.calls[0]
        assert call["command"] == "copilot"
        assert call["cwd"] == tmp_path.resolve()
        assert call["args"][-2:] == ["-p", "What is this?"]
        assert "--add-dir" in call["args"]

    @pytest.mark.asyncio
    async def test_progress_is_forwarded(self, store, tmp_path):
        adapter, _ = make_adapter(store, ok("streamed"))
        chunks = []
        await adapter.execute("q", CopilotOptions(working_dir=str(tmp_path)), on_progress=chunks.append)
        assert chunks == ["streamed"]

    @pytest.mark.asyncio
    async def test_conversation_id_and_auto_resume(self, store, tmp_path):
        adapter, runner = make_adapter(
            store,
            ok("Done.\nConversation: conv-42"),
            ok("Follow-up answer"),
        )
        options = CopilotOptions(working_dir=str(tmp_path))

        first = await adapter.execute("first", options)
        assert first.conversation_id == "conv-42"
        assert "--resume" not in runner.calls[0]["args"]

        second = await adapter.execute("second", options)
        assert second.session_id == first.session_id
        assert second.conversation_id == "conv-42"
        assert "--resume" in runner.calls[1]["args"]

    @pytest.mark.asyncio
    async def test_continue_suppresses_auto_resume(self, store, tmp_path):
        adapter, runner = make_adapter(store, ok("Conversation: c1"), ok("again"))
        await adapter.execute("one", CopilotOptions(working_dir=str(tmp_path)))
        await adapter.execute(
            "two", CopilotOptions(working_dir=str(tmp_path), continue_session=True)
        )
        args = runner.calls[1]["args"]
        assert "--continue" in args
        assert "--resume" not in args

    @pytest.mark.asyncio
    async def test_session_model_is_reused(self, store, tmp_path, monkeypatch):
        monkeypatch.delenv("COPILOT_MODEL", raising=False)
        adapter, runner = make_adapter(store, ok("a"), ok("b"))
        await adapter.execute("one", CopilotOptions(working_dir=str(tmp_path), model="gpt-5"))
        await adapter.execute("two", CopilotOptions(working_dir=str(tmp_path)))
        assert runner.calls[1]["args"][:2] == ["--model", "gpt-5"]

    @pytest.mark.asyncio
    async def test_env_model_beats_session_model(self, store, tmp_path, monkeypatch):
        adapter, runner = make_adapter(store, ok("a"), ok("b"))
        monkeypatch.delenv("COPILOT_MODEL", raising=False)
        await adapter.execute("one", CopilotOptions(working_dir=str(tmp_path), model="gpt-5"))
        monkeypatch.setenv("COPILOT_MODEL", "claude-sonnet-4.5")
        await adapter.execute("two", CopilotOptions(working_dir=str(tmp_path)))
        assert runner.calls[1]["args"][:2] == ["--model", "claude-sonnet-4.5"]

    def test_injected_empty_store_is_kept(self):
        store = SessionStore()
        resolver = WorkingDirectoryResolver()
        adapter = CopilotAdapter(store=store, resolver=resolver)
        assert adapter.store is store
        assert adapter.resolver is resolver

    @pytest.mark.asyncio
    async def test_session_tracking_disabled(self, store, tmp_path):
        adapter, _ = make_adapter(store, ok("x"))
        result = await adapter.execute(
            "q", CopilotOptions(working_dir=str(tmp_path), enable_session_tracking=False)
        )
        assert result.session_id is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_timeout_override(self, store, tmp_path):
        adapter, runner = make_adapter(store, ok("x"), ok("y"), timeout_ms=1000)
        await adapter.execute("q", CopilotOptions(working_dir=str(tmp_path)))
        await adapter.execute("q", CopilotOptions(working_dir=str(tmp_path), timeout_ms=50))
        assert runner.calls[0]["timeout_ms"] == 1000
        assert runner.calls[1]["timeout_ms"] == 50

    @pytest.mark.asyncio
    async def test_empty_prompt(self, store):
        adapter, runner = make_adapter(store)
        with pytest.raises(ValueError, match="Prompt must not be empty"):
            await adapter.execute("   ")
        assert runner.calls == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_timeout_is_classified(self, store, tmp_path):
        failed = ProcessResult(ok=False, exit_code=None, timed_out=True, signal="SIGTERM", attempts=2)
        adapter, _ = make_adapter(store, failed)

        with pytest.raises(ClassifiedError) as info:
            await adapter.execute(
                "slow", CopilotOptions(working_dir=str(tmp_path), timeout_ms=100)
            )

        error = info.value
        assert error.category == ErrorCategory.TIMEOUT
        assert error.message == "Copilot CLI timed out after 100ms"
        assert error.context["timed_out"] is True
        assert error.context["attempts"] == 2
        assert error.context["working_dir"] == str(tmp_path.resolve())

    @pytest.mark.asyncio
    async def test_missing_cli(self, store, tmp_path):
        failed = ProcessResult(
            ok=False,
            exit_code=None,
            stderr="Command 'copilot' not found. Is it installed and in PATH?",
        )
        adapter, _ = make_adapter(store, failed)
        with pytest.raises(ClassifiedError) as info:
            await adapter.execute("q", CopilotOptions(working_dir=str(tmp_path)))
        assert info.value.category == ErrorCategory.CLI_NOT_FOUND

    @pytest.mark.asyncio
    async def test_nonzero_exit_with_auth_message(self, store, tmp_path):
        failed = ProcessResult(ok=False, exit_code=1, stderr="Error: not authenticated, please login")
        adapter, _ = make_adapter(store, failed)
        with pytest.raises(ClassifiedError) as info:
            await adapter.execute("q", CopilotOptions(working_dir=str(tmp_path)))
        assert info.value.category == ErrorCategory.AUTHENTICATION
        assert info.value.context["exit_code"] == 1

    @pytest.mark.asyncio
    async def test_large_partial_output_is_salvaged(self, store, tmp_path):
        partial = "y" * (MIN_SALVAGE_CHARS + 1)
        failed = ProcessResult(
            ok=False, exit_code=None, signal="SIGTERM", partial_stdout=partial, stdout=partial
        )
        adapter, _ = make_adapter(store, failed)
        result = await adapter.execute("q", CopilotOptions(working_dir=str(tmp_path)))
        assert result.partial is True
        assert result.output == partial

    @pytest.mark.asyncio
    async def test_small_partial_output_is_an_error(self, store, tmp_path):
        failed = ProcessResult(
            ok=False, exit_code=None, signal="SIGTERM", partial_stdout="short", stdout="short"
        )
        adapter, _ = make_adapter(store, failed, max_output_bytes=10)
        with pytest.raises(ClassifiedError, match="output exceeded 10 bytes"):
            await adapter.execute("q", CopilotOptions(working_dir=str(tmp_path)))

    @pytest.mark.asyncio
    async def test_failed_run_keeps_user_turn(self, store, tmp_path):
        adapter, _ = make_adapter(store, ProcessResult(ok=False, exit_code=2, stderr="bad flag"))
        with pytest.raises(ClassifiedError):
            await adapter.execute("q", CopilotOptions(working_dir=str(tmp_path)))
        session = store.get_session_by_workspace(tmp_path.resolve())
        assert [h.role for h in session.history] == ["user"]


class TestDiagnostics:
    HELP = (
        "Usage: copilot [options]\n"
        '  --model <model>  Set the AI model (choices: "gpt-5", "claude-sonnet-4.5")\n'
    )

    @pytest.mark.asyncio
    async def test_health_when_installed(self, store):
        adapter, runner = make_adapter(store, ok("copilot version 0.0.339"), ok(self.HELP))
        health = await adapter.health()
        assert health == {
            "installed": True,
            "version": "0.0.339",
            "authenticated": True,
            "auth_error": None,
            "available_models": ["gpt-5", "claude-sonnet-4.5"],
        }
        assert runner.calls[0]["args"] == ["--version"]
        assert runner.calls[1]["args"] == ["--help"]

    @pytest.mark.asyncio
    async def test_health_when_missing(self, store):
        missing = ProcessResult(ok=False, exit_code=None, stderr="Command 'copilot' not found.")
        adapter, runner = make_adapter(store, missing)
        health = await adapter.health()
        assert health["installed"] is False
        assert health["available_models"] == []
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_version_timeout_means_unknown(self, store):
        adapter, runner = make_adapter(
            store, ProcessResult(ok=False, exit_code=None, timed_out=True, signal="SIGTERM")
        )
        assert await adapter.get_version() is None
        assert runner.calls[0]["timeout_ms"] == 10_000

    @pytest.mark.asyncio
    async def test_unauthenticated(self, store):
        adapter, _ = make_adapter(
            store,
            ok("1.2.3"),
            ProcessResult(ok=False, exit_code=1, stderr="Authentication required"),
        )
        health = await adapter.health()
        assert health["authenticated"] is False
        assert "login" in health["auth_error"]

    def test_parse_models_fallback(self):
        models = CopilotAdapter.parse_models("no model info")
        assert "gpt-5" in models


class TestHandleToolErrors:
    @pytest.mark.asyncio
    async def test_success_passthrough(self):
        @handle_tool_errors
        async def tool():
            return OperationResult.success_result("fine").to_dict()

        assert (await tool())["success"] is True

    @pytest.mark.asyncio
    async def test_classified_error(self):
        @handle_tool_errors
        async def tool():
            raise ClassifiedError("rate limit exceeded", ErrorCategory.RATE_LIMIT)

        result = await tool()
        assert result["success"] is False
        assert result["message"] == "Rate Limit Exceeded: rate limit exceeded"
        assert result["data"]["error"]["retryable"] is True
        assert result["errors"][-1].startswith("Suggestion:")

    @pytest.mark.asyncio
    async def test_value_error(self):
        @handle_tool_errors
        async def tool():
            raise ValueError("bad input")

        assert await tool() == OperationResult.error_result("bad input").to_dict()

    @pytest.mark.asyncio
    async def test_unexpected_error(self):
        @handle_tool_errors
        async def exploding_tool():
            raise RuntimeError("kaboom")

        result = await exploding_tool()
        assert result["message"] == "Operation failed: kaboom"
        assert "Tool: exploding_tool" in result["errors"]


@pytest.mark.asyncio
async def test_gather_limited_preserves_order_and_exceptions():
    async def value(n):
        if n == 2:
            raise ValueError("two")
        return n

    results = await gather_limited([value(n) for n in range(4)], limit=2)
    assert results[0] == 0 and results[1] == 1 and results[3] == 3
    assert isinstance(results[2], ValueError)
