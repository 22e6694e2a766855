"""Retry policy for transient capability failures (source, embedding, generation)."""

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import is_transient

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_MULTIPLIER = 0.5  # seconds, doubled per attempt
DEFAULT_BACKOFF_MAX_SECONDS = 8


class HelperRetry:
    """Builds tenacity retry loops from environment configuration.

    Only BridgeErrors whose kind is transient are retried; everything else is
    re-raised on the first attempt. After the last attempt the original error
    is re-raised so callers see the BridgeError, not a tenacity.RetryError.

    Usage::

        async for attempt in helper_retry.attempts():
            with attempt:
                vector = await client.do_embed(text)
    """

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()
        self.max_attempts = int(helper_config.get_number_val("RETRY_MAX_ATTEMPTS", default=DEFAULT_MAX_ATTEMPTS))
        self.backoff_multiplier = helper_config.get_number_val("RETRY_BACKOFF_MULTIPLIER", default=DEFAULT_BACKOFF_MULTIPLIER)
        self.backoff_max = helper_config.get_number_val("RETRY_BACKOFF_MAX_SECONDS", default=DEFAULT_BACKOFF_MAX_SECONDS)

    def attempts(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_exponential(multiplier=self.backoff_multiplier, max=self.backoff_max),
            retry=retry_if_exception(is_transient),
            before_sleep=self._log_retry,
            reraise=True,
        )

    def _log_retry(self, retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self.logging.warning(
            "Transient failure (attempt %d of %d): %s. Retrying...",
            retry_state.attempt_number,
            self.max_attempts,
            exc,
        )
