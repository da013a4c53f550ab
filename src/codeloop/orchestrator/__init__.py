"""Agent loop: think, confirm, execute, verify.

Usage::

    from codeloop.orchestrator import Agent

    outcome = Agent(project_root, model=my_model).run("Fix the failing tests")
"""

from codeloop.orchestrator.callbacks import auto_approve, cli_prompt, log_and_approve, reject_all
from codeloop.orchestrator.history import compress_messages, truncate_tool_result
from codeloop.orchestrator.loop import Agent, format_outcome, run_agent
from codeloop.orchestrator.models import AgentEvent, AgentOutcome, AgentSession, AgentState

__all__ = [
    "Agent",
    "AgentEvent",
    "AgentOutcome",
    "AgentSession",
    "AgentState",
    "auto_approve",
    "cli_prompt",
    "compress_messages",
    "format_outcome",
    "log_and_approve",
    "reject_all",
    "run_agent",
    "truncate_tool_result",
]
