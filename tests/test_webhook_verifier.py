"""
Tests for services/knowledge_sync/WebhookVerifier.py
"""

import logging

import pytest

from services.knowledge_sync.WebhookVerifier import WebhookVerifier
from shared.models.errors import BridgeError, ErrorKind

SECRET = "whsec_test"
NOW = 1_700_000_000
BODY = b'{"type":"page.updated","entity":{"id":"page1"}}'


@pytest.fixture
def verifier(helper_config) -> WebhookVerifier:
    return WebhookVerifier(helper_config, clock=lambda: NOW)


def assert_rejected(verifier, signature, timestamp, body=BODY, secret=SECRET):
    with pytest.raises(BridgeError) as exc_info:
        verifier.verify("notion", secret, body, signature, timestamp)
    assert exc_info.value.kind == ErrorKind.INVALID_SIGNATURE
    return exc_info.value


class TestVerify:
    """Test signature and freshness checks."""

    def test_valid_signature_accepted(self, verifier):
        signature = WebhookVerifier.compute_signature(SECRET, str(NOW), BODY)
        assert verifier.verify("notion", SECRET, BODY, signature, str(NOW)) is True

    def test_prefixed_signature_accepted(self, verifier):
        signature = "sha256=" + WebhookVerifier.compute_signature(SECRET, str(NOW), BODY)
        assert verifier.verify("notion", SECRET, BODY, signature, str(NOW)) is True

    def test_millisecond_timestamp_accepted(self, verifier):
        timestamp = str(NOW * 1000)
        signature = WebhookVerifier.compute_signature(SECRET, timestamp, BODY)
        assert verifier.verify("notion", SECRET, BODY, signature, timestamp) is True

    def test_wrong_secret_rejected(self, verifier):
        signature = WebhookVerifier.compute_signature("other-secret", str(NOW), BODY)
        error = assert_rejected(verifier, signature, str(NOW))
        assert "mismatch" in error.message

    def test_tampered_body_rejected(self, verifier):
        signature = WebhookVerifier.compute_signature(SECRET, str(NOW), BODY)
        assert_rejected(verifier, signature, str(NOW), body=BODY + b" ")

    def test_non_ascii_signature_rejected(self, verifier):
        assert_rejected(verifier, "ümlaut", str(NOW))

    def test_missing_headers_rejected(self, verifier):
        signature = WebhookVerifier.compute_signature(SECRET, str(NOW), BODY)
        assert_rejected(verifier, None, str(NOW))
        assert_rejected(verifier, signature, None)

    def test_stale_timestamp_rejected(self, verifier):
        timestamp = str(NOW - 301)
        signature = WebhookVerifier.compute_signature(SECRET, timestamp, BODY)
        error = assert_rejected(verifier, signature, timestamp)
        assert "clock skew" in error.message

    def test_timestamp_within_skew_accepted(self, verifier):
        timestamp = str(NOW + 299)
        signature = WebhookVerifier.compute_signature(SECRET, timestamp, BODY)
        assert verifier.verify("notion", SECRET, BODY, signature, timestamp) is True

    def test_non_numeric_timestamp_rejected(self, verifier):
        assert_rejected(verifier, "abc", "yesterday")

    @pytest.mark.parametrize("timestamp", ["nan", "inf", "-inf"])
    def test_non_finite_timestamp_rejected(self, verifier, timestamp):
        signature = WebhookVerifier.compute_signature(SECRET, timestamp, BODY)
        error = assert_rejected(verifier, signature, timestamp)
        assert "finite" in error.message


class TestUnsignedMode:
    def test_no_secret_accepts_with_warning(self, verifier, caplog):
        with caplog.at_level(logging.WARNING):
            assert verifier.verify("notion", "", BODY, None, None) is False
        assert "unsigned webhook" in caplog.text
