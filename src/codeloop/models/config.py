"""Configuration models for the agent loop.

AgentConfig holds per-task limits and policies. VerifyOptions selects which
verification steps run after the agent finishes.
"""

from __future__ import annotations

import enum
import os
from typing import Literal

from pydantic import BaseModel, Field

from codeloop.exceptions import ConfigError


class ConfirmationPolicy(str, enum.Enum):
    """Which tool calls need explicit user approval before they run."""

    NEVER = "never"
    DANGEROUS = "dangerous"
    ALWAYS = "always"


class VerifyOptions(BaseModel):
    """Verification steps to run and their time limit."""

    run_build: bool = True
    run_test: bool = True
    run_typecheck: bool = True
    run_lint: bool = False
    timeout: float = Field(default=120.0, gt=0)


class AgentConfig(BaseModel):
    """Per-task agent configuration.

    Example::

        from codeloop import AgentConfig
        config = AgentConfig(max_iterations=50, confirmation="never")
    """

    model_config = {"arbitrary_types_allowed": True, "validate_assignment": True}

    max_iterations: int = Field(default=200, ge=1)
    max_duration: float = Field(default=20 * 60.0, gt=0)  # seconds
    confirmation: ConfirmationPolicy = ConfirmationPolicy.DANGEROUS
    dry_run: bool = False
    auto_verify: bool = True
    max_fix_attempts: int = Field(default=3, ge=0)
    command_timeout: float = Field(default=60.0, gt=0)
    max_read_bytes: int = Field(default=100 * 1024, gt=0)
    tool_result_max_chars: int = Field(default=8000, gt=0)
    compress_history_chars: int = Field(default=80_000, gt=0)
    schema_dialect: Literal["openai", "anthropic"] = "openai"
    native_tools: bool = True
    verify: VerifyOptions = Field(default_factory=VerifyOptions)

    @classmethod
    def from_env(cls, prefix: str = "CODELOOP_", **overrides: object) -> AgentConfig:
        """Build a config from ``CODELOOP_*`` environment variables.

        Recognized: MAX_ITERATIONS, MAX_DURATION, CONFIRMATION, DRY_RUN,
        AUTO_VERIFY, MAX_FIX_ATTEMPTS, COMMAND_TIMEOUT, SCHEMA_DIALECT.
        Keyword overrides win over the environment.

        Raises:
            ConfigError: If a variable holds an invalid value.
        """
        from pydantic import ValidationError

        values: dict[str, object] = {}
        for name in (
            "max_iterations",
            "max_duration",
            "confirmation",
            "dry_run",
            "auto_verify",
            "max_fix_attempts",
            "command_timeout",
            "schema_dialect",
        ):
            raw = os.environ.get(prefix + name.upper())
            if raw is not None and raw != "":
                values[name] = raw
        values.update(overrides)
        try:
            return cls.model_validate(values)
        except ValidationError as exc:
            raise ConfigError(f"Invalid agent configuration: {exc}") from exc
