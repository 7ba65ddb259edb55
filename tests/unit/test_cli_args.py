"""Tests for Copilot CLI argument construction."""

import json

import pytest

from copilot_mcp.cli_args import CopilotOptions, as_list, build_copilot_args


def test_minimal_invocation():
    assert build_copilot_args("hello", env={}) == ["-p", "hello"]


def test_prompt_is_always_last():
    options = CopilotOptions(model="gpt-5", allow_all_tools=True, no_color=True, resume=True)
    args = build_copilot_args("do it", options, working_dir="/repo", env={})
    assert args[-2:] == ["-p", "do it"]
    assert args.count("-p") == 1


def test_prompt_is_passed_verbatim():
    prompt = "rm -rf / ; echo $(whoami) && `ls`"
    assert build_copilot_args(prompt, env={})[-1] == prompt


def test_allow_all_tools_excludes_allow_tool():
    options = CopilotOptions(allow_all_tools=True, allow_tool=["shell(git)", "write"])
    args = build_copilot_args("x", options, env={})
    assert "--allow-all-tools" in args
    assert "--allow-tool" not in args


def test_repeated_flags():
    options = CopilotOptions(
        allow_tool=["shell(git)", "write"],
        deny_tool="shell(rm)",
        disable_mcp_server=["github", "fs"],
    )
    args = build_copilot_args("x", options, env={})
    assert args[:-2] == [
        "--allow-tool", "shell(git)",
        "--allow-tool", "write",
        "--deny-tool", "shell(rm)",
        "--disable-mcp-server", "github",
        "--disable-mcp-server", "fs",
    ]


def test_working_dir_added_and_deduplicated():
    options = CopilotOptions(add_dir=["/repo", "/shared", "/repo"])
    args = build_copilot_args("x", options, working_dir="/repo", env={})
    assert args[:-2] == ["--add-dir", "/repo", "--add-dir", "/shared"]


def test_working_dir_only():
    args = build_copilot_args("x", working_dir="/repo", env={})
    assert args == ["--add-dir", "/repo", "-p", "x"]


class TestModel:
    def test_explicit_model(self):
        args = build_copilot_args("x", CopilotOptions(model="gpt-5"), env={"COPILOT_MODEL": "other"})
        assert args[:2] == ["--model", "gpt-5"]

    def test_model_from_environment(self):
        args = build_copilot_args("x", env={"COPILOT_MODEL": "claude-sonnet-4.5"})
        assert args[:2] == ["--model", "claude-sonnet-4.5"]

    def test_no_model(self):
        assert "--model" not in build_copilot_args("x", env={"COPILOT_MODEL": ""})


def test_boolean_flags_and_logging():
    options = CopilotOptions(
        allow_all_paths=True,
        log_dir="/tmp/logs",
        log_level="debug",
        no_color=True,
        banner=True,
        screen_reader=True,
    )
    args = build_copilot_args("x", options, env={})
    assert args[:-2] == [
        "--allow-all-paths",
        "--log-dir", "/tmp/logs",
        "--log-level", "debug",
        "--no-color",
        "--banner",
        "--screen-reader",
    ]


def test_additional_mcp_config_dict_is_serialized():
    config = {"mcpServers": {"local": {"command": "node"}}}
    args = build_copilot_args("x", CopilotOptions(additional_mcp_config=config), env={})
    index = args.index("--additional-mcp-config")
    assert json.loads(args[index + 1]) == config


def test_additional_mcp_config_string_passes_through():
    args = build_copilot_args("x", CopilotOptions(additional_mcp_config="@/tmp/mcp.json"), env={})
    assert args[:2] == ["--additional-mcp-config", "@/tmp/mcp.json"]


def test_resume_is_a_bare_flag():
    args = build_copilot_args("x", CopilotOptions(resume=True), env={})
    assert args == ["--resume", "-p", "x"]


def test_continue_flag():
    args = build_copilot_args("x", CopilotOptions(continue_session=True), env={})
    assert args == ["--continue", "-p", "x"]


def test_invalid_log_level():
    with pytest.raises(ValueError, match="Invalid log_level"):
        CopilotOptions(log_level="verbose")


def test_invalid_timeout():
    with pytest.raises(ValueError, match="timeout_ms"):
        CopilotOptions(timeout_ms=0)


def test_as_list():
    assert as_list(None) == []
    assert as_list("a") == ["a"]
    assert as_list(("a", "b")) == ["a", "b"]
