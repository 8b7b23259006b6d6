"""
Retry classification and backoff for RPC calls.

Only transport failures (TransientRpcError) are retried. A chain whose RPC
keeps failing past the consecutive-failure limit halts; other chains are
unaffected.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ..errors import ChainHalted, TransientRpcError

logger = logging.getLogger(__name__)


class ErrorHandler:
    """
    Centralized error handling for RPC operations.

    Provides classification, logging and backoff for errors raised by the
    RPC collaborator.
    """

    def __init__(self, base_delay: float = 1.0, max_delay: float = 60.0,
                 logger: Optional[logging.Logger] = None):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.logger = logger or logging.getLogger(__name__)

    def classify_error(self, error: Exception) -> str:
        """
        Classify an error into a category for appropriate handling.

        Returns:
            One of 'rate_limit', 'network', 'fatal'
        """
        if not isinstance(error, TransientRpcError):
            return 'fatal'
        error_str = str(error).lower()
        if any(keyword in error_str for keyword in ['rate limit', 'too many requests', '429']):
            return 'rate_limit'
        return 'network'

    def should_retry(self, error: Exception, attempt: int, max_retries: int) -> bool:
        """
        Determine if an error should trigger a retry.

        Args:
            error: Exception that occurred
            attempt: Current attempt number (0-based)
            max_retries: Maximum number of attempts allowed
        """
        if attempt >= max_retries - 1:
            return False
        return self.classify_error(error) != 'fatal'

    def get_retry_delay(self, error: Exception, attempt: int) -> float:
        """Exponential backoff, doubled for rate limits, capped at max_delay."""
        delay = min(self.base_delay * 2 ** attempt, self.max_delay)
        if self.classify_error(error) == 'rate_limit':
            delay = min(delay * 2, self.max_delay)
        return delay

    def log_error(self, error: Exception, context: Dict[str, Any]):
        log_data = {
            'error_type': type(error).__name__,
            'error_category': self.classify_error(error),
            'error_message': str(error),
            **context
        }
        if log_data['error_category'] == 'rate_limit':
            self.logger.info("Rate limit encountered", extra=log_data)
        else:
            self.logger.warning(f"RPC operation error: {error}", extra=log_data)


async def retry_rpc(
    operation: Callable[..., Awaitable[Any]],
    *args: Any,
    chain_id: int,
    handler: ErrorHandler,
    max_failures: int,
    **kwargs: Any,
) -> Any:
    """
    Await an RPC operation, retrying transient failures with backoff.

    Raises:
        ChainHalted: After `max_failures` consecutive transient failures
    """
    name = getattr(operation, "__name__", str(operation))
    for attempt in range(max_failures):
        try:
            return await operation(*args, **kwargs)
        except TransientRpcError as e:
            handler.log_error(e, {"attempt": attempt + 1, "max_failures": max_failures,
                                  "operation": name, "chain_id": chain_id})
            if not handler.should_retry(e, attempt, max_failures):
                raise ChainHalted(chain_id, f"{name} failed {max_failures} times: {e}") from e
            delay = handler.get_retry_delay(e, attempt)
            handler.logger.info(f"Retrying {name} in {delay}s... (attempt {attempt + 1}/{max_failures})")
            await asyncio.sleep(delay)
    raise ChainHalted(chain_id, f"{name} was not attempted")
