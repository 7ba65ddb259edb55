"""
Translation of structured options into Copilot CLI flags.

The resulting invocation is ``copilot [flags...] -p <prompt>``.
"""

import json
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from copilot_mcp.runner import RetryPolicy

MODEL_ENV_VAR = "COPILOT_MODEL"

StrOrList = Optional[Union[str, Sequence[str]]]


class LogLevel(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    DEBUG = "debug"
    ALL = "all"
    DEFAULT = "default"
    NONE = "none"


class Flag:
    PROMPT = "-p"
    MODEL = "--model"
    ADD_DIR = "--add-dir"
    ALLOW_ALL_TOOLS = "--allow-all-tools"
    ALLOW_TOOL = "--allow-tool"
    DENY_TOOL = "--deny-tool"
    DISABLE_MCP_SERVER = "--disable-mcp-server"
    ALLOW_ALL_PATHS = "--allow-all-paths"
    ADDITIONAL_MCP_CONFIG = "--additional-mcp-config"
    LOG_DIR = "--log-dir"
    LOG_LEVEL = "--log-level"
    NO_COLOR = "--no-color"
    BANNER = "--banner"
    SCREEN_READER = "--screen-reader"
    RESUME = "--resume"
    CONTINUE = "--continue"
    HELP = "--help"
    VERSION = "--version"


def as_list(value: StrOrList) -> List[str]:
    """Normalize a scalar-or-list option to a list of strings."""
    if value is None:
        return []
    if isinstance(value, (str, Path)):
        return [str(value)]
    return [str(item) for item in value]


@dataclass
class CopilotOptions:
    """
    Options for one Copilot CLI invocation.

    Flag options map one-to-one onto CLI flags. Execution options
    (working_dir, session_id, timeout_ms, ...) are consumed by the
    adapter and never appear on the command line.
    """

    model: Optional[str] = None
    add_dir: StrOrList = None
    allow_all_tools: bool = False
    allow_tool: StrOrList = None
    deny_tool: StrOrList = None
    disable_mcp_server: StrOrList = None
    allow_all_paths: bool = False
    additional_mcp_config: Optional[Union[str, Dict[str, Any]]] = None
    log_dir: Optional[str] = None
    log_level: Optional[str] = None
    no_color: bool = False
    banner: bool = False
    screen_reader: bool = False
    resume: bool = False
    continue_session: bool = False

    # execution options
    working_dir: Optional[str] = None
    session_id: Optional[str] = None
    enable_session_tracking: bool = True
    timeout_ms: Optional[int] = None
    max_output_bytes: Optional[int] = None
    retry: Optional[RetryPolicy] = None

    def __post_init__(self):
        if self.log_level is not None:
            valid = [level.value for level in LogLevel]
            if str(self.log_level) not in valid:
                raise ValueError(
                    f"Invalid log_level '{self.log_level}'. Must be one of: {', '.join(valid)}"
                )
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")


def _resolve_model(options: CopilotOptions, env: Mapping[str, str]) -> Optional[str]:
    if options.model:
        return options.model
    return env.get(MODEL_ENV_VAR) or None


def build_copilot_args(
    prompt: str,
    options: Optional[CopilotOptions] = None,
    working_dir: Optional[Union[str, Path]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> List[str]:
    """
    Build the argument list for ``copilot``.

    Args:
        prompt: Prompt text, passed last as ``-p <prompt>``
        options: Flag options
        working_dir: Resolved working directory, always granted via --add-dir
        env: Environment used for the model default (defaults to os.environ)

    Returns:
        Ordered argument list (without the executable)
    """
    options = options or CopilotOptions()
    env = os.environ if env is None else env
    args: List[str] = []

    model = _resolve_model(options, env)
    if model:
        args += [Flag.MODEL, model]

    directories = as_list(options.add_dir)
    if working_dir is not None:
        directories.append(str(working_dir))
    for directory in dict.fromkeys(directories):
        args += [Flag.ADD_DIR, directory]

    if options.allow_all_tools:
        args.append(Flag.ALLOW_ALL_TOOLS)
    else:
        for tool in as_list(options.allow_tool):
            args += [Flag.ALLOW_TOOL, tool]

    for tool in as_list(options.deny_tool):
        args += [Flag.DENY_TOOL, tool]

    for server in as_list(options.disable_mcp_server):
        args += [Flag.DISABLE_MCP_SERVER, server]

    if options.allow_all_paths:
        args.append(Flag.ALLOW_ALL_PATHS)

    if options.additional_mcp_config:
        config = options.additional_mcp_config
        if not isinstance(config, str):
            config = json.dumps(config)
        args += [Flag.ADDITIONAL_MCP_CONFIG, config]

    if options.log_dir:
        args += [Flag.LOG_DIR, options.log_dir]
    if options.log_level:
        args += [Flag.LOG_LEVEL, str(LogLevel(options.log_level).value)]
    if options.no_color:
        args.append(Flag.NO_COLOR)
    if options.banner:
        args.append(Flag.BANNER)
    if options.screen_reader:
        args.append(Flag.SCREEN_READER)

    # The CLI picks its own most recent conversation; no ID is passed.
    if options.resume:
        args.append(Flag.RESUME)
    if options.continue_session:
        args.append(Flag.CONTINUE)

    args += [Flag.PROMPT, prompt]
    return args
