"""
Retry logic for embedding provider API calls.

Implements exponential backoff with jitter for 429 rate limit errors
(OpenAI, Ollama). Every other provider error is raised immediately.
"""

import time
import random
import logging
import os
from typing import Callable, TypeVar, Optional
from functools import wraps

from ..errors import ProviderUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RateLimitError(ProviderUnavailableError):
    """Raised when rate limit is exceeded and retries exhausted"""
    pass


def get_provider_max_retries(provider_name: str) -> int:
    """
    Get the max retry count for a specific provider.

    Configuration precedence:
    1. Environment variable ({PROVIDER}_MAX_RETRIES)
    2. Hardcoded defaults per provider

    Defaults based on provider characteristics:
    - ollama: 3 (local, fewer retries needed)
    - openai: 8 (cloud API, more resilience)
    - mock: 0 (testing, no retries)

    Args:
        provider_name: Provider name ('openai', 'ollama', 'mock')

    Returns:
        Maximum retry attempts for rate-limited requests
    """
    provider = provider_name.lower()

    defaults = {
        'ollama': 3,
        'openai': 8,
        'mock': 0,
    }

    env_var = f"{provider.upper()}_MAX_RETRIES"
    retries = int(os.getenv(env_var, defaults.get(provider, 5)))

    logger.debug(f"Provider '{provider}' max_retries: {retries} (env or default)")
    return retries


def exponential_backoff_retry(
    max_retries: int = 5,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    jitter: bool = True,
    catch_exceptions: tuple = None
):
    """
    Decorator that retries a function with exponential backoff on rate limit errors.

    - Attempt 1: immediate
    - Attempt 2: ~1s delay
    - Attempt 3: ~2s delay
    - Attempt 4: ~4s delay

    Jitter (random ±20%) spreads out retries from concurrent callers.

    Args:
        max_retries: Maximum number of retry attempts (default: 5)
        base_delay: Base delay in seconds for exponential backoff (default: 1.0)
        max_delay: Maximum delay cap in seconds (default: 60.0)
        jitter: Add random ±20% jitter to delays (default: True)
        catch_exceptions: Tuple of exception types to catch (auto-detects if None)

    Returns:
        Decorated function that retries on rate limit errors

    Example:
        @exponential_backoff_retry(max_retries=5)
        def call_api():
            return client.embeddings.create(...)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            for attempt in range(max_retries + 1):
                try:
                    result = func(*args, **kwargs)

                    if attempt > 0:
                        logger.info(
                            f"Rate limit recovered after {attempt} retries "
                            f"(function: {func.__name__})"
                        )

                    return result

                except Exception as e:
                    if not _is_rate_limit_error(e, catch_exceptions):
                        raise

                    if attempt == max_retries:
                        logger.error(
                            f"Rate limit retry exhausted after {max_retries} attempts "
                            f"(function: {func.__name__}): {e}"
                        )
                        raise RateLimitError(
                            f"Rate limit exceeded after {max_retries} retries: {e}"
                        ) from e

                    delay = min(base_delay * (2 ** attempt), max_delay)
                    if jitter:
                        delay = delay * random.uniform(0.8, 1.2)

                    logger.warning(
                        f"Rate limit hit (attempt {attempt + 1}/{max_retries + 1}), "
                        f"backing off for {delay:.2f}s (function: {func.__name__}): {e}"
                    )

                    time.sleep(delay)

        return wrapper
    return decorator


def _is_rate_limit_error(exception: Exception, catch_exceptions: Optional[tuple] = None) -> bool:
    """
    Detect if an exception is a rate limit error.

    Checks for:
    - Explicit exception types
    - HTTP 429 on an attached response (requests, openai)
    - Provider-specific rate limit exception names
    - Rate limit keywords in the error message

    Args:
        exception: The exception to check
        catch_exceptions: Optional tuple of exception types to catch

    Returns:
        True if this is a rate limit error that should trigger retry
    """
    if catch_exceptions and isinstance(exception, catch_exceptions):
        return True

    # Already exhausted further down the stack
    if isinstance(exception, RateLimitError):
        return False

    response = getattr(exception, 'response', None)
    if response is not None and getattr(response, 'status_code', None) == 429:
        return True

    error_type = type(exception).__name__.lower()
    if 'ratelimit' in error_type:
        return True

    error_str = str(exception).lower()
    if '429' in error_str:
        return True

    rate_limit_keywords = [
        'rate limit',
        'too many requests',
        'quota exceeded',
        'tokens per minute',
    ]
    return any(keyword in error_str for keyword in rate_limit_keywords)
