"""MCP tools that run prompts through the Copilot CLI.

This module provides:
- ask: Run a prompt with full CLI option support and session tracking
- batch: Run several atomic tasks, sequentially or in parallel
- review: Code review with a structured review prompt
- brainstorm: Idea generation framed by a brainstorming methodology
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Union

from fastmcp import Context

from copilot_mcp.adapters import CopilotAdapter, ExecutionResult, OperationResult, handle_tool_errors
from copilot_mcp.adapters.cli_adapter import gather_limited
from copilot_mcp.cli_args import CopilotOptions
from copilot_mcp.errors import ClassifiedError
from copilot_mcp.progress import ProgressRelay, ProgressSink, mcp_progress_sink

logger = logging.getLogger(__name__)

BATCH_TASK_TIMEOUT_MS = 120_000
REVIEW_TIMEOUT_MS = 300_000
BATCH_TASK_DELAY_SECONDS = 1.0
BATCH_MAX_PARALLEL = 4

PRIORITY_RANK = {"high": 3, "normal": 2, "low": 1}

REVIEW_FOCUS = {
    "security": "Focus on security vulnerabilities, authentication issues, input validation, XSS, SQL injection, CSRF, and secure coding practices.",
    "performance": "Focus on performance bottlenecks, inefficient algorithms, memory usage, caching opportunities, and optimization potential.",
    "code-quality": "Focus on code structure, readability, maintainability, SOLID principles, design patterns, and clean code practices.",
    "best-practices": "Focus on language-specific best practices, conventions, idiomatic code, and industry standards.",
    "architecture": "Focus on system design, component coupling, separation of concerns, scalability, and architectural patterns.",
    "testing": "Focus on test coverage, test quality, test patterns, edge cases, and testing best practices.",
    "documentation": "Focus on code documentation, comments, README files, API documentation, and knowledge sharing.",
    "accessibility": "Focus on web accessibility (WCAG), semantic HTML, ARIA attributes, keyboard navigation, and inclusive design.",
    "comprehensive": "Perform a comprehensive review covering security, performance, code quality, best practices, and architecture.",
}

REVIEW_FORMATS = {
    "json": "Format the response as structured JSON with an issues array containing: {type, severity, file, line, description, suggestion, priority}.",
    "markdown": "Format the response as a well-structured Markdown report with sections, code blocks, and clear headings.",
    "text": "Format the response as clear, readable text with numbered issues and structured sections.",
}

SEVERITIES = ("low", "medium", "high", "critical")

METHODOLOGIES = {
    "divergent": (
        "**Divergent Thinking Approach:**\n"
        "- Generate maximum quantity of ideas without self-censoring\n"
        "- Build on wild or seemingly impractical ideas\n"
        "- Combine unrelated concepts for unexpected solutions\n"
        "- Postpone evaluation until all ideas are generated"
    ),
    "convergent": (
        "**Convergent Thinking Approach:**\n"
        "- Refine and improve existing concepts\n"
        "- Synthesize related ideas into stronger solutions\n"
        "- Prioritize based on feasibility and impact\n"
        "- Develop implementation pathways for top ideas"
    ),
    "scamper": (
        "**SCAMPER Creative Triggers:**\n"
        "- **Substitute:** What can be substituted or replaced?\n"
        "- **Combine:** What can be combined or merged?\n"
        "- **Adapt:** What can be adapted from other domains?\n"
        "- **Modify:** What can be magnified, minimized, or altered?\n"
        "- **Put to other use:** How else can this be used?\n"
        "- **Eliminate:** What can be removed or simplified?\n"
        "- **Reverse:** What can be rearranged or reversed?"
    ),
    "design-thinking": (
        "**Human-Centered Design Thinking:**\n"
        "- **Empathize:** Consider user needs, pain points, and contexts\n"
        "- **Define:** Frame problems from the user's perspective\n"
        "- **Ideate:** Generate user-focused solutions\n"
        "- **Prototype Mindset:** Focus on testable, iterative concepts"
    ),
    "lateral": (
        "**Lateral Thinking Approach:**\n"
        "- Make unexpected connections between unrelated fields\n"
        "- Challenge fundamental assumptions\n"
        "- Apply metaphors and analogies from other domains\n"
        "- Reverse conventional thinking patterns"
    ),
}


async def execute_with_progress(
    adapter: CopilotAdapter,
    prompt: str,
    options: CopilotOptions,
    sink: Optional[ProgressSink] = None,
    status: Optional[str] = None,
) -> ExecutionResult:
    """
    Run a prompt, relaying CLI output to ``sink`` as progress notifications.

    Callers sharing one progress token must share one sink so the progress
    counter keeps increasing across runs.
    """
    if sink is None:
        return await adapter.execute(prompt, options)
    async with ProgressRelay(sink) as relay:
        if status:
            relay.emit(status)
        return await adapter.execute(prompt, options, on_progress=relay.emit)


def _sink_for(ctx: Optional[Context]) -> Optional[ProgressSink]:
    return mcp_progress_sink(ctx) if ctx is not None else None


def build_review_prompt(
    target: str,
    review_type: str = "comprehensive",
    severity: Optional[str] = None,
    output_format: str = "markdown",
    include_fix_suggestions: bool = True,
    include_priority_ranking: bool = True,
    exclude_patterns: Optional[List[str]] = None,
    max_issues: int = 20,
) -> str:
    if review_type not in REVIEW_FOCUS:
        raise ValueError(
            f"Invalid review_type '{review_type}'. Must be one of: {', '.join(REVIEW_FOCUS)}"
        )
    if output_format not in REVIEW_FORMATS:
        raise ValueError(
            f"Invalid output_format '{output_format}'. Must be one of: {', '.join(REVIEW_FORMATS)}"
        )
    if severity is not None and severity not in SEVERITIES:
        raise ValueError(f"Invalid severity '{severity}'. Must be one of: {', '.join(SEVERITIES)}")
    if not 1 <= max_issues <= 100:
        raise ValueError("max_issues must be between 1 and 100")

    parts = [
        f"Please perform a {review_type} code review of {target}.",
        REVIEW_FOCUS[review_type],
    ]
    if severity:
        parts.append(f"Only report issues of {severity} severity or higher.")
    if exclude_patterns:
        parts.append(f"Exclude files matching these patterns: {', '.join(exclude_patterns)}.")
    parts.append(f"Limit to top {max_issues} most important issues.")
    if include_fix_suggestions:
        parts.append(
            "For each issue, provide specific fix suggestions with code examples where applicable."
        )
    if include_priority_ranking:
        parts.append("Rank issues by priority (Critical, High, Medium, Low) and impact.")
    parts.append(REVIEW_FORMATS[output_format])
    parts.append("Include a summary section with statistics, key findings, and overall assessment.")
    return " ".join(parts)


def build_brainstorm_prompt(
    challenge: str,
    methodology: str = "auto",
    domain: Optional[str] = None,
    constraints: Optional[str] = None,
    existing_context: Optional[str] = None,
    idea_count: int = 12,
    include_analysis: bool = True,
) -> str:
    if methodology != "auto" and methodology not in METHODOLOGIES:
        raise ValueError(
            f"Invalid methodology '{methodology}'. "
            f"Must be one of: auto, {', '.join(METHODOLOGIES)}"
        )
    if idea_count < 1:
        raise ValueError("idea_count must be positive")

    if methodology == "auto":
        lead = (
            f"Given the {domain} domain, combine the most effective approaches:"
            if domain
            else "Combine multiple methodologies:"
        )
        framework = (
            f"**Adaptive Approach:**\n{lead}\n"
            "- Divergent exploration with domain-specific knowledge\n"
            "- SCAMPER triggers and lateral thinking\n"
            "- Human-centered perspective for practical value"
        )
    else:
        framework = METHODOLOGIES[methodology]

    context_lines = []
    if domain:
        context_lines.append(f"Domain: {domain}")
    if constraints:
        context_lines.append(f"Constraints: {constraints}")
    if existing_context:
        context_lines.append(f"Background: {existing_context}")

    sections = [
        "# BRAINSTORMING SESSION",
        f"## Challenge: {challenge}",
        f"## Framework\n{framework}",
    ]
    if context_lines:
        sections.append("## Context\n" + "\n".join(context_lines))
    sections.append(
        f"## Requirements\nGenerate {idea_count} actionable ideas. "
        "Keep descriptions concise (2-3 sentences max)."
    )
    if include_analysis:
        sections.append("## Analysis\nRate each: Feasibility (1-5), Impact (1-5), Innovation (1-5)")
    idea_format = "## Format\n### Idea [N]: [Name]\nDescription: [2-3 sentences]"
    if include_analysis:
        idea_format += "\nRatings: F:[1-5] I:[1-5] N:[1-5]"
    sections.append(idea_format)
    sections.append("Begin:")
    return "\n\n".join(sections)


def normalize_batch_tasks(tasks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Validate batch items and order them by priority (high first, stable)."""
    if not tasks:
        raise ValueError("No tasks provided for batch execution")
    normalized = []
    for index, item in enumerate(tasks, start=1):
        task = (item or {}).get("task")
        if not task or not str(task).strip():
            raise ValueError(f"Task {index} is missing a 'task' description")
        priority = item.get("priority") or "normal"
        if priority not in PRIORITY_RANK:
            raise ValueError(
                f"Invalid priority '{priority}' for task {index}. Must be high, normal or low."
            )
        normalized.append({"task": str(task), "target": item.get("target"), "priority": priority})
    return sorted(normalized, key=lambda t: PRIORITY_RANK[t["priority"]], reverse=True)


def register_copilot_tools(mcp, adapter: CopilotAdapter) -> None:
    """Register ask, batch, review and brainstorm on a FastMCP app."""

    @mcp.tool(
        name="ask",
        description=(
            "Execute GitHub Copilot CLI with a prompt. Use @path syntax to reference files. "
            "Supports model selection, directory grants, tool permissions and "
            "multi-turn sessions scoped to the working directory."
        ),
    )
    @handle_tool_errors
    async def ask(
        prompt: str,
        model: Optional[str] = None,
        add_dir: Optional[Union[str, List[str]]] = None,
        allow_all_tools: bool = True,
        allow_tool: Optional[Union[str, List[str]]] = None,
        deny_tool: Optional[Union[str, List[str]]] = None,
        disable_mcp_server: Optional[Union[str, List[str]]] = None,
        allow_all_paths: bool = False,
        additional_mcp_config: Optional[str] = None,
        log_dir: Optional[str] = None,
        log_level: Optional[str] = None,
        no_color: bool = False,
        screen_reader: bool = False,
        banner: bool = False,
        resume: bool = False,
        continue_session: bool = False,
        working_dir: Optional[str] = None,
        session_id: Optional[str] = None,
        enable_session_tracking: bool = True,
        timeout: Optional[int] = None,
        ctx: Optional[Context] = None,
    ) -> Dict[str, Any]:
        if not prompt or not prompt.strip():
            raise ValueError(
                "Please provide a prompt. Use @ syntax to include files "
                "(e.g. '@src/app.py explain what this does') or ask a general question."
            )
        options = CopilotOptions(
            model=model,
            add_dir=add_dir,
            allow_all_tools=allow_all_tools,
            allow_tool=allow_tool,
            deny_tool=deny_tool,
            disable_mcp_server=disable_mcp_server,
            allow_all_paths=allow_all_paths,
            additional_mcp_config=additional_mcp_config,
            log_dir=log_dir,
            log_level=log_level,
            no_color=no_color,
            screen_reader=screen_reader,
            banner=banner,
            resume=resume,
            continue_session=continue_session,
            working_dir=working_dir,
            session_id=session_id,
            enable_session_tracking=enable_session_tracking,
            timeout_ms=timeout,
        )
        result = await execute_with_progress(adapter, prompt, options, _sink_for(ctx))
        warnings = ["CLI failed; returning partial output"] if result.partial else []
        return OperationResult.success_result(
            message="Copilot response", data=result.to_dict(), warnings=warnings
        ).to_dict()

    @mcp.tool(
        name="batch",
        description=(
            "Delegate multiple atomic tasks to GitHub Copilot CLI. Each task is "
            "{task, target?, priority: high|normal|low}; tasks run by priority, "
            "sequentially by default."
        ),
    )
    @handle_tool_errors
    async def batch(
        tasks: List[Dict[str, Any]],
        add_dir: Optional[Union[str, List[str]]] = None,
        allow_all_tools: bool = True,
        allow_tool: Optional[Union[str, List[str]]] = None,
        deny_tool: Optional[Union[str, List[str]]] = None,
        log_level: Optional[str] = None,
        working_dir: Optional[str] = None,
        parallel: bool = False,
        stop_on_error: bool = True,
        timeout: Optional[int] = None,
        ctx: Optional[Context] = None,
    ) -> Dict[str, Any]:
        ordered = normalize_batch_tasks(tasks)
        options = CopilotOptions(
            add_dir=add_dir,
            allow_all_tools=allow_all_tools,
            allow_tool=allow_tool,
            deny_tool=deny_tool,
            log_level=log_level,
            working_dir=working_dir,
            enable_session_tracking=False,
            timeout_ms=timeout or BATCH_TASK_TIMEOUT_MS,
        )
        total = len(ordered)
        sink = _sink_for(ctx)

        async def run_task(index: int, item: Dict[str, Any]) -> Dict[str, Any]:
            prompt = f"{item['task']} for {item['target']}" if item["target"] else item["task"]
            started = time.monotonic()
            try:
                result = await execute_with_progress(
                    adapter, prompt, options, sink, status=f"Task {index + 1}/{total}: {item['task'][:50]}"
                )
                return {
                    "task": item["task"],
                    "priority": item["priority"],
                    "success": True,
                    "output": result.output,
                    "duration_ms": int((time.monotonic() - started) * 1000),
                }
            except ClassifiedError as e:
                return {
                    "task": item["task"],
                    "priority": item["priority"],
                    "success": False,
                    "error": e.message,
                    "category": e.category.value,
                    "duration_ms": int((time.monotonic() - started) * 1000),
                }

        results: List[Dict[str, Any]] = []
        stopped_at = None
        if parallel:
            outcomes = await gather_limited(
                [run_task(i, item) for i, item in enumerate(ordered)], BATCH_MAX_PARALLEL
            )
            for item, outcome in zip(ordered, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(f"Batch task raised: {outcome}")
                    outcome = {"task": item["task"], "priority": item["priority"],
                               "success": False, "error": str(outcome)}
                results.append(outcome)
        else:
            for index, item in enumerate(ordered):
                outcome = await run_task(index, item)
                results.append(outcome)
                if not outcome["success"] and stop_on_error:
                    stopped_at = index + 1
                    break
                if index < total - 1:
                    await asyncio.sleep(BATCH_TASK_DELAY_SECONDS)

        failed = sum(1 for r in results if not r["success"])
        data = {
            "total": total,
            "processed": len(results),
            "successful": len(results) - failed,
            "failed": failed,
            "mode": "parallel" if parallel else "sequential",
            "results": results,
        }
        if stopped_at is not None:
            data["stopped_at"] = stopped_at
            return OperationResult.error_result(
                message=f"Batch execution stopped on task {stopped_at}: {results[-1]['error']}",
                errors=[r["error"] for r in results if not r["success"]],
                data=data,
            ).to_dict()
        if failed:
            return OperationResult.error_result(
                message=f"{failed} of {total} tasks failed",
                errors=[r["error"] for r in results if not r["success"]],
                data=data,
            ).to_dict()
        return OperationResult.success_result(
            message=f"All {total} tasks completed", data=data
        ).to_dict()

    @mcp.tool(
        name="review",
        description=(
            "Code review using GitHub Copilot CLI. Review types: code-quality, security, "
            "performance, best-practices, architecture, testing, documentation, "
            "accessibility, comprehensive."
        ),
    )
    @handle_tool_errors
    async def review(
        target: str,
        review_type: str = "comprehensive",
        model: Optional[str] = None,
        severity: Optional[str] = None,
        output_format: str = "markdown",
        include_fix_suggestions: bool = True,
        include_priority_ranking: bool = True,
        exclude_patterns: Optional[List[str]] = None,
        max_issues: int = 20,
        add_dir: Optional[Union[str, List[str]]] = None,
        allow_all_tools: bool = True,
        resume: bool = False,
        continue_session: bool = False,
        working_dir: Optional[str] = None,
        timeout: Optional[int] = None,
        ctx: Optional[Context] = None,
    ) -> Dict[str, Any]:
        if not target or not target.strip():
            raise ValueError("Please provide target files/directories to review")
        prompt = build_review_prompt(
            target,
            review_type=review_type,
            severity=severity,
            output_format=output_format,
            include_fix_suggestions=include_fix_suggestions,
            include_priority_ranking=include_priority_ranking,
            exclude_patterns=exclude_patterns,
            max_issues=max_issues,
        )
        options = CopilotOptions(
            model=model,
            add_dir=add_dir,
            allow_all_tools=allow_all_tools,
            resume=resume,
            continue_session=continue_session,
            working_dir=working_dir,
            enable_session_tracking=False,
            timeout_ms=timeout or REVIEW_TIMEOUT_MS,
        )
        result = await execute_with_progress(
            adapter, prompt, options, _sink_for(ctx), status=f"Starting {review_type} review of {target}"
        )
        data = result.to_dict()
        data.update({"target": target, "review_type": review_type, "severity": severity})
        return OperationResult.success_result(
            message=f"{review_type} review of {target} completed", data=data
        ).to_dict()

    @mcp.tool(
        name="brainstorm",
        description=(
            "Generate ideas with a structured brainstorming methodology: divergent, "
            "convergent, scamper, design-thinking, lateral or auto."
        ),
    )
    @handle_tool_errors
    async def brainstorm(
        prompt: str,
        methodology: str = "auto",
        domain: Optional[str] = None,
        constraints: Optional[str] = None,
        existing_context: Optional[str] = None,
        idea_count: int = 12,
        include_analysis: bool = True,
        add_dir: Optional[Union[str, List[str]]] = None,
        working_dir: Optional[str] = None,
        ctx: Optional[Context] = None,
    ) -> Dict[str, Any]:
        if not prompt or not prompt.strip():
            raise ValueError("You must provide a brainstorming challenge or question to explore")
        enhanced = build_brainstorm_prompt(
            prompt.strip(),
            methodology=methodology,
            domain=domain,
            constraints=constraints,
            existing_context=existing_context,
            idea_count=idea_count,
            include_analysis=include_analysis,
        )
        logger.debug(f"Brainstorm: methodology '{methodology}' for domain '{domain or 'general'}'")
        options = CopilotOptions(
            add_dir=add_dir,
            allow_all_tools=True,
            working_dir=working_dir,
            enable_session_tracking=False,
        )
        result = await execute_with_progress(
            adapter, enhanced, options, _sink_for(ctx),
            status=f"Generating {idea_count} ideas via {methodology} methodology",
        )
        data = result.to_dict()
        data.update({"methodology": methodology, "idea_count": idea_count})
        return OperationResult.success_result(message="Brainstorm completed", data=data).to_dict()
