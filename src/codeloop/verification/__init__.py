"""Project verification: detect checks, run them, parse their errors."""

from codeloop.verification.detect import (
    DEFAULT_DETECTORS,
    ProjectChecks,
    VerificationCommand,
    detect_project_checks,
)
from codeloop.verification.models import ParsedError, VerificationSummary, VerifyResult
from codeloop.verification.parsing import error_signature, parse_errors
from codeloop.verification.runner import (
    Verifier,
    filter_results_to_files,
    format_errors_for_agent,
    format_verify_results,
    get_verification_summary,
    has_verification_errors,
    run_all_verifications,
)

__all__ = [
    "DEFAULT_DETECTORS",
    "ParsedError",
    "ProjectChecks",
    "VerificationCommand",
    "VerificationSummary",
    "Verifier",
    "VerifyResult",
    "detect_project_checks",
    "error_signature",
    "filter_results_to_files",
    "format_errors_for_agent",
    "format_verify_results",
    "get_verification_summary",
    "has_verification_errors",
    "parse_errors",
    "run_all_verifications",
]
