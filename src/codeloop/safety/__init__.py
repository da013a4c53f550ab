"""Command validation and risk classification."""

from codeloop.safety.risk import RISK_KEYWORDS, RISKY_TOOLS, is_dangerous, matches_risk_keyword
from codeloop.safety.validator import (
    ALLOWED_COMMANDS,
    BLOCKED_COMMANDS,
    BLOCKED_PATTERNS,
    ValidationResult,
    get_allowed_commands,
    is_within,
    validate_command,
)

__all__ = [
    "ALLOWED_COMMANDS",
    "BLOCKED_COMMANDS",
    "BLOCKED_PATTERNS",
    "RISK_KEYWORDS",
    "RISKY_TOOLS",
    "ValidationResult",
    "get_allowed_commands",
    "is_dangerous",
    "is_within",
    "matches_risk_keyword",
    "validate_command",
]
