"""
Structured error classification for Copilot CLI failures.

Maps raw failure text (stderr, exception messages) to an ErrorCategory,
attaches user-facing guidance, and computes retry delays for transient
failures.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """Failure categories, listed in classification precedence order."""

    CLI_NOT_FOUND = "cli_not_found"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    SANDBOX = "sandbox"
    NETWORK = "network"
    SESSION = "session"
    UNKNOWN = "unknown"


ERROR_TITLES: Dict[ErrorCategory, str] = {
    ErrorCategory.CLI_NOT_FOUND: "CLI Not Found",
    ErrorCategory.AUTHENTICATION: "Authentication Error",
    ErrorCategory.RATE_LIMIT: "Rate Limit Exceeded",
    ErrorCategory.TIMEOUT: "Operation Timeout",
    ErrorCategory.SANDBOX: "Sandbox Violation",
    ErrorCategory.NETWORK: "Network Error",
    ErrorCategory.SESSION: "Session Error",
    ErrorCategory.UNKNOWN: "Unknown Error",
}

# (description, suggestion)
ERROR_SOLUTIONS: Dict[ErrorCategory, Tuple[str, str]] = {
    ErrorCategory.CLI_NOT_FOUND: (
        "GitHub Copilot CLI is not installed or not in PATH.",
        "Install with: npm install -g @github/copilot",
    ),
    ErrorCategory.AUTHENTICATION: (
        "Authentication failed or credentials are invalid.",
        'Run "copilot" to login interactively, or check your GitHub credentials.',
    ),
    ErrorCategory.RATE_LIMIT: (
        "Too many requests have been made in a short period.",
        "Wait a few minutes before trying again.",
    ),
    ErrorCategory.TIMEOUT: (
        "The operation took too long to complete.",
        "Try again with a shorter prompt or smaller file set.",
    ),
    ErrorCategory.SANDBOX: (
        "The operation was blocked by sandbox or permission restrictions.",
        "Use allow_tool or allow_all_tools to grant the necessary permissions.",
    ),
    ErrorCategory.NETWORK: (
        "A network error occurred while communicating with the service.",
        "Check your internet connection and try again.",
    ),
    ErrorCategory.SESSION: (
        "Session management error occurred.",
        "Try creating a new session or clearing existing sessions.",
    ),
    ErrorCategory.UNKNOWN: (
        "An unexpected error occurred.",
        "Check the error details and try again.",
    ),
}

RETRYABLE_CATEGORIES = frozenset(
    {ErrorCategory.RATE_LIMIT, ErrorCategory.TIMEOUT, ErrorCategory.NETWORK}
)

# Base retry delays in seconds
_BASE_RETRY_DELAYS: Dict[ErrorCategory, float] = {
    ErrorCategory.RATE_LIMIT: 60.0,
    ErrorCategory.TIMEOUT: 5.0,
    ErrorCategory.NETWORK: 10.0,
}
_DEFAULT_RETRY_DELAY = 5.0
_MAX_RETRY_DELAY = 300.0


@dataclass(frozen=True)
class KeywordMatcher:
    """Matches a category when any keyword occurs in the lowercased message."""

    category: ErrorCategory
    keywords: Tuple[str, ...]

    def matches(self, lowered: str) -> bool:
        return any(keyword in lowered for keyword in self.keywords)


DEFAULT_MATCHERS: Tuple[KeywordMatcher, ...] = (
    KeywordMatcher(
        ErrorCategory.CLI_NOT_FOUND,
        ("command not found", "not found", "enoent", "is not recognized"),
    ),
    KeywordMatcher(
        ErrorCategory.AUTHENTICATION,
        ("authentication", "unauthorized", "401", "login", "credentials", "token"),
    ),
    KeywordMatcher(
        ErrorCategory.RATE_LIMIT,
        ("rate limit", "quota", "429", "too many requests"),
    ),
    KeywordMatcher(
        ErrorCategory.TIMEOUT,
        ("timeout", "timed out", "etimedout", "took too long"),
    ),
    KeywordMatcher(
        ErrorCategory.SANDBOX,
        ("sandbox", "permission", "denied", "not allowed", "blocked"),
    ),
    KeywordMatcher(
        ErrorCategory.NETWORK,
        ("network", "econnrefused", "econnreset", "enotfound", "socket", "connection"),
    ),
    KeywordMatcher(
        ErrorCategory.SESSION,
        ("session", "resume", "conversation"),
    ),
)


class ErrorClassifier:
    """
    Ordered first-match classifier over a list of matchers.

    New categories or keywords are added by passing a different matcher
    sequence; the first matcher that fires determines the category.
    """

    def __init__(self, matchers: Optional[Iterable[KeywordMatcher]] = None):
        self.matchers: List[KeywordMatcher] = list(
            DEFAULT_MATCHERS if matchers is None else matchers
        )

    def classify(self, message: str) -> ErrorCategory:
        lowered = (message or "").lower()
        for matcher in self.matchers:
            if matcher.matches(lowered):
                return matcher.category
        return ErrorCategory.UNKNOWN


_default_classifier = ErrorClassifier()


def classify(message: str) -> ErrorCategory:
    """Classify failure text using the default matcher precedence."""
    return _default_classifier.classify(message)


class ClassifiedError(Exception):
    """
    Exception carrying a failure category and diagnostic context.

    Attributes:
        category: ErrorCategory determined from the message text
        message: Failure message
        context: Diagnostic key/value pairs (command, exit code, ...)
        original_error: Underlying exception, if any
        timestamp: UTC time the error was created
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.context: Dict[str, Any] = dict(context or {})
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)

    @property
    def title(self) -> str:
        return ERROR_TITLES[self.category]

    @property
    def description(self) -> str:
        return ERROR_SOLUTIONS[self.category][0]

    @property
    def suggestion(self) -> str:
        return ERROR_SOLUTIONS[self.category][1]

    @property
    def retryable(self) -> bool:
        return is_retryable(self.category)

    def to_user_string(self) -> str:
        """Render title, message, description and suggestion for display."""
        return (
            f"{self.title}: {self.message}\n"
            f"{self.description}\n"
            f"Suggestion: {self.suggestion}"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a machine-readable payload for MCP responses."""
        return {
            "category": self.category.value,
            "title": self.title,
            "message": self.message,
            "description": self.description,
            "suggestion": self.suggestion,
            "retryable": self.retryable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def __repr__(self) -> str:
        return f"ClassifiedError(category={self.category.value!r}, message={self.message!r})"


def create_error(error: Any, context: Optional[Dict[str, Any]] = None) -> ClassifiedError:
    """
    Build a ClassifiedError from an exception, a string, or any value.

    An existing ClassifiedError keeps its category; its context is merged
    with the new context, new keys winning.

    Args:
        error: Exception, message string or arbitrary value
        context: Extra diagnostic context

    Returns:
        ClassifiedError instance
    """
    if isinstance(error, ClassifiedError):
        if not context:
            return error
        merged = ClassifiedError(
            error.message,
            error.category,
            context={**error.context, **context},
            original_error=error.original_error,
        )
        merged.timestamp = error.timestamp
        return merged

    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
        return ClassifiedError(message, classify(message), context, original_error=error)

    message = error if isinstance(error, str) else str(error)
    return ClassifiedError(message, classify(message), context)


def format_error_for_user(error: Any) -> str:
    """Classify any error and render it for display."""
    return create_error(error).to_user_string()


def is_retryable(category: ErrorCategory) -> bool:
    """Return True for transient categories worth retrying."""
    return category in RETRYABLE_CATEGORIES


def get_retry_delay(category: ErrorCategory, attempt: int) -> float:
    """
    Compute the delay before the next retry, in seconds.

    Exponential backoff from a per-category base, with +/-20% jitter,
    capped at five minutes.

    Args:
        category: Category of the failed attempt
        attempt: 1-based attempt number

    Returns:
        Delay in seconds
    """
    base = _BASE_RETRY_DELAYS.get(category, _DEFAULT_RETRY_DELAY)
    delay = base * (2 ** max(attempt - 1, 0))
    jitter = delay * 0.2 * (random.random() * 2 - 1)
    return min(delay + jitter, _MAX_RETRY_DELAY)


def log_error(error: ClassifiedError) -> None:
    """Log a classified error: retryable categories as warnings, others as errors."""
    level = logging.WARNING if error.retryable else logging.ERROR
    logger.log(level, f"[{error.category.value}] {error.message} {error.context or ''}")
