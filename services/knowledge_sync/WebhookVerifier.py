"""HMAC-SHA256 verification of inbound webhook deliveries."""

import hashlib
import hmac
import math
import time

from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import BridgeError, ErrorKind

SIGNATURE_PREFIX = "sha256="


class WebhookVerifier:
    """Verifies signed webhook deliveries.

    The signature is the hex HMAC-SHA256 of "{timestamp}.{raw_body}" under the
    source's shared secret. A source with no secret configured runs in
    unsigned mode: every delivery is accepted and a warning is logged.
    """

    def __init__(self, helper_config: HelperConfig, clock=time.time) -> None:
        self.logging = helper_config.get_logger()
        self.max_clock_skew = helper_config.get_number_val("WEBHOOK_MAX_CLOCK_SKEW_SECONDS", default=300)
        self._clock = clock

    @staticmethod
    def compute_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
        message = timestamp.encode("utf-8") + b"." + raw_body
        return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()

    def _parse_timestamp(self, timestamp: str) -> float:
        try:
            value = float(timestamp)
        except ValueError:
            raise BridgeError(ErrorKind.INVALID_SIGNATURE, "Webhook timestamp is not numeric.")
        if not math.isfinite(value):
            raise BridgeError(ErrorKind.INVALID_SIGNATURE, "Webhook timestamp is not a finite number.")
        # millisecond timestamps
        if value > 1e12:
            value /= 1000.0
        return value

    def verify(self, engine: str, secret: str, raw_body: bytes, signature: str | None, timestamp: str | None) -> bool:
        """Check a delivery's signature and freshness.

        Args:
            engine (str): Source engine name, for logging.
            secret (str): Shared secret; "" means unsigned mode.
            raw_body (bytes): The exact request body as received.
            signature (str | None): Signature header value, optionally prefixed "sha256=".
            timestamp (str | None): Timestamp header value in Unix seconds or milliseconds.

        Returns:
            bool: True if the delivery was signed and verified, False if accepted unsigned.

        Raises:
            BridgeError: INVALID_SIGNATURE if a header is missing, the timestamp is
                outside the allowed clock skew, or the signature does not match.
        """
        if not secret:
            self.logging.warning("Accepting unsigned webhook for source '%s' (no webhook secret configured)", engine)
            return False

        if not signature or not timestamp:
            raise BridgeError(ErrorKind.INVALID_SIGNATURE, "Missing webhook signature or timestamp header.")

        skew = abs(self._clock() - self._parse_timestamp(timestamp.strip()))
        if skew > self.max_clock_skew:
            raise BridgeError(
                ErrorKind.INVALID_SIGNATURE,
                f"Webhook timestamp outside allowed clock skew ({skew:.0f}s > {self.max_clock_skew}s).",
            )

        provided = signature.strip()
        if provided.lower().startswith(SIGNATURE_PREFIX):
            provided = provided[len(SIGNATURE_PREFIX):]
        expected = self.compute_signature(secret, timestamp.strip(), raw_body)
        if not hmac.compare_digest(provided.lower().encode("utf-8"), expected.encode("utf-8")):
            raise BridgeError(ErrorKind.INVALID_SIGNATURE, "Webhook signature mismatch.")
        return True
