"""Configuration models."""

from codeloop.models.config import AgentConfig, ConfirmationPolicy, VerifyOptions

__all__ = ["AgentConfig", "ConfirmationPolicy", "VerifyOptions"]
