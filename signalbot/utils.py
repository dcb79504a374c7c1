"""
Utility functions for the crowd-signal campaign bot.

This module provides shared helper utilities used across the codebase:
tolerant JSON parsing of model output, retry with backoff for outbound
HTTP calls, id generation and small numeric/formatting helpers.
"""

import json
import logging
import random
import re
import secrets
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Generic, Optional, TypeVar, Union

import requests
from requests.exceptions import ConnectionError, HTTPError, Timeout

# Configure module logger
logger = logging.getLogger(__name__)

# Type variable for generic function typing
T = TypeVar('T')

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})

_TRAILING_COMMA = re.compile(r",\s*([}\]])")


class SignalBotError(Exception):
    """Base class for errors raised by the campaign bot."""


class ClassificationError(SignalBotError):
    """The classification collaborator returned no usable content."""


class ExecutionError(SignalBotError):
    """The execution collaborator rejected or failed a request."""


@dataclass(frozen=True)
class ParsedOk(Generic[T]):
    """Structured output parsed successfully."""
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ParsedDefault(Generic[T]):
    """Structured output could not be parsed; carries the fallback value."""
    value: T
    error: str

    @property
    def ok(self) -> bool:
        return False


ParseResult = Union[ParsedOk[T], ParsedDefault[T]]


def _strip_to_json(text: str) -> str:
    """Remove markdown fences and surrounding prose around a JSON payload."""
    text = text.strip()

    # Remove markdown code blocks if present
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]

    if text.endswith("```"):
        text = text[:-3]

    text = text.strip()

    first_brace = text.find("{")
    first_bracket = text.find("[")

    if first_brace != -1 and (first_bracket == -1 or first_brace < first_bracket):
        last_brace = text.rfind("}")
        if last_brace > first_brace:
            text = text[first_brace:last_brace + 1]
    elif first_bracket != -1:
        last_bracket = text.rfind("]")
        if last_bracket > first_bracket:
            text = text[first_bracket:last_bracket + 1]

    return _TRAILING_COMMA.sub(r"\1", text)


def parse_llm_json(text: Optional[str], default: T, label: str = "LLM") -> ParseResult:
    """
    Parse JSON from a model response without ever raising.

    Handles markdown code fences, explanatory text around the payload and
    trailing commas. Any failure, including a payload whose top-level type
    differs from the default's, yields ParsedDefault carrying `default`.

    Args:
        text: Raw response text
        default: Fallback value returned inside ParsedDefault
        label: Caller name for log context

    Returns:
        ParsedOk with the decoded value, or ParsedDefault with the fallback
    """
    if not text or not isinstance(text, str):
        logger.warning(f"[{label}] Empty response, using fallback")
        return ParsedDefault(default, "empty response")

    cleaned = _strip_to_json(text)

    try:
        value = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning(f"[{label}] Failed to parse JSON response: {e}")
        logger.debug(f"[{label}] Raw text (first 200 chars): {text[:200]!r}")
        return ParsedDefault(default, str(e))

    if default is not None and not isinstance(value, type(default)):
        logger.warning(
            f"[{label}] Expected {type(default).__name__}, got {type(value).__name__}"
        )
        return ParsedDefault(default, f"unexpected type {type(value).__name__}")

    return ParsedOk(value)


def generate_id(prefix: str = "") -> str:
    """Random 16-hex-char id, optionally prefixed (e.g. "sig_ab12...")."""
    token = secrets.token_hex(8)
    return f"{prefix}_{token}" if prefix else token


def is_transient_http_error(exc: BaseException) -> bool:
    """
    Whether an exception from a `requests` call is worth retrying.

    Timeouts and connection errors are transient; HTTP errors are retried
    only for rate limiting and 5xx gateway/server statuses.
    """
    if isinstance(exc, (Timeout, ConnectionError)):
        return True

    if isinstance(exc, HTTPError) and exc.response is not None:
        return exc.response.status_code in RETRYABLE_STATUSES

    return False


def _retry_after_seconds(exc: BaseException) -> Optional[float]:
    """Server-provided Retry-After delay in seconds, if present."""
    response = getattr(exc, "response", None)
    if response is None:
        return None

    header = response.headers.get("retry-after") if response.headers else None
    if not header:
        return None

    try:
        return max(0.0, float(header))
    except ValueError:
        return None


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: float = 1.0,
    is_retryable: Callable[[BaseException], bool] = is_transient_http_error,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator for retrying function calls with exponential backoff.

    Retries the decorated function when `is_retryable(exc)` is true, waiting
    `initial_delay * exponential_base ** attempt` plus up to `jitter` seconds
    between attempts, capped at `max_delay`. A Retry-After header on the
    failed response overrides the computed delay. Non-retryable exceptions
    and the last exception after exhausting retries propagate unchanged.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        initial_delay: Base delay in seconds before first retry (default: 1.0)
        max_delay: Maximum delay in seconds between retries (default: 60.0)
        exponential_base: Base for exponential backoff calculation (default: 2.0)
        jitter: Upper bound of random seconds added to each delay (default: 1.0)
        is_retryable: Predicate deciding whether an exception is retried

    Returns:
        Decorator function

    Example:
        @retry_with_backoff(max_retries=2, initial_delay=2.0)
        def place_bet():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except Exception as e:
                    if not is_retryable(e) or attempt >= max_retries:
                        if attempt > 0:
                            logger.error(
                                f"{func.__name__} failed after {attempt + 1} attempts: {e}"
                            )
                        raise

                    delay = _retry_after_seconds(e)
                    if delay is None:
                        delay = initial_delay * (exponential_base ** attempt) + random.uniform(0, jitter)
                    delay = min(max_delay, delay)

                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt + 1}/{max_retries + 1}): {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    time.sleep(delay)

            raise RuntimeError("unreachable")  # pragma: no cover

        return wrapper

    return decorator


def request_json(method: str, url: str, timeout: float, **kwargs: Any) -> Any:
    """
    Issue an HTTP request and decode its JSON body.

    Raises requests.HTTPError for non-2xx responses so retry_with_backoff
    can inspect the status code.
    """
    response = requests.request(method, url, timeout=timeout, **kwargs)
    response.raise_for_status()
    if not response.content:
        return None
    return response.json()


def clamp(value: float, min_value: float, max_value: float) -> float:
    """
    Clamp a value between minimum and maximum bounds.

    Raises:
        ValueError: If min_value > max_value
    """
    if min_value > max_value:
        raise ValueError(f"min_value ({min_value}) must be <= max_value ({max_value})")

    return max(min_value, min(value, max_value))


def safe_float(value: Any, default: float = 0.0) -> float:
    """
    Safely convert a value to float with a default fallback.

    Handles None, strings, integers, and floats. Returns default on failure.
    """
    if value is None or isinstance(value, bool):
        return default

    if isinstance(value, (int, float)):
        return float(value)

    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return default

    return default


def safe_int(value: Any, default: int = 0) -> int:
    """Integer conversion that tolerates None and numeric strings."""
    if value is None or isinstance(value, bool):
        return default

    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def format_currency(value: float, decimals: int = 0) -> str:
    """
    Format a float value as a currency string.

    Returns:
        Formatted currency string (e.g., "$1,234.56")
    """
    if decimals == 0:
        return f"${value:,.0f}"
    else:
        return f"${value:,.{decimals}f}"


def format_signed_percentage(value: float, decimals: int = 1) -> str:
    """Format an already-scaled percentage with an explicit sign ("+3.5%")."""
    sign = "+" if value >= 0 else ""
    return f"{sign}{value:.{decimals}f}%"
