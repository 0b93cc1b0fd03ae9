"""
Tests for integration_runtime.webhooks.verifier
=================================================

These tests verify HMAC webhook verification:
    - Valid signatures pass for hex / base64 / prefixed schemes
    - Tampered bodies, wrong secrets and malformed headers fail (never raise)
    - Timestamped schemes enforce the replay window
"""

import base64
import hashlib
import hmac
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import SecretStr, ValidationError

from integration_runtime.core.models import WebhookEnvelope
from integration_runtime.webhooks.verifier import WebhookSignatureScheme, WebhookVerifier

SECRET = "whsec-test-secret"
BODY = b'{"action":"opened","number":42}'


def envelope(headers: dict, body: bytes = BODY, received_at=None) -> WebhookEnvelope:
    return WebhookEnvelope.from_request(body, headers, received_at=received_at)


# =============================================================================
# Test: Default Scheme
# =============================================================================
class TestDefaultScheme:
    """X-Signature: hex(HMAC-SHA256(secret, body))."""

    def test_matches_reference_hmac(self) -> None:
        expected = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
        assert WebhookVerifier().sign(BODY, SECRET) == expected

    def test_valid_signature(self) -> None:
        verifier = WebhookVerifier()
        signature = verifier.sign(BODY, SECRET)
        assert verifier.verify(envelope({"X-Signature": signature}), SECRET) is True

    def test_secret_str_accepted(self) -> None:
        verifier = WebhookVerifier()
        signature = verifier.sign(BODY, SECRET)
        assert verifier.verify(envelope({"x-signature": signature}), SecretStr(SECRET)) is True

    def test_tampered_body(self) -> None:
        verifier = WebhookVerifier()
        signature = verifier.sign(BODY, SECRET)
        tampered = envelope({"X-Signature": signature}, body=BODY.replace(b"42", b"43"))
        assert verifier.verify(tampered, SECRET) is False

    def test_reserialized_body_does_not_verify(self) -> None:
        """Signatures cover raw bytes; whitespace changes break them."""
        verifier = WebhookVerifier()
        signature = verifier.sign(BODY, SECRET)
        pretty = b'{"action": "opened", "number": 42}'
        assert verifier.verify(envelope({"X-Signature": signature}, body=pretty), SECRET) is False

    def test_wrong_secret(self) -> None:
        verifier = WebhookVerifier()
        signature = verifier.sign(BODY, "another-secret")
        assert verifier.verify(envelope({"X-Signature": signature}), SECRET) is False

    @pytest.mark.parametrize("headers", [{}, {"X-Signature": ""}, {"X-Signature": "zz-not-hex"}])
    def test_missing_or_malformed_header(self, headers) -> None:
        assert WebhookVerifier().verify(envelope(headers), SECRET) is False

    @pytest.mark.parametrize("secret", [None, ""])
    def test_no_secret_rejects(self, secret) -> None:
        verifier = WebhookVerifier()
        signature = verifier.sign(BODY, SECRET)
        assert verifier.verify(envelope({"X-Signature": signature}), secret) is False


# =============================================================================
# Test: Vendor Schemes
# =============================================================================
class TestVendorSchemes:
    """Prefix, algorithm and encoding variations."""

    def test_prefixed_sha256(self) -> None:
        scheme = WebhookSignatureScheme(header="X-Hub-Signature-256", prefix="sha256=")
        verifier = WebhookVerifier(scheme)
        signature = verifier.sign(BODY, SECRET)
        assert signature.startswith("sha256=")
        assert verifier.verify(envelope({"X-Hub-Signature-256": signature}), SECRET) is True

    def test_prefix_mismatch(self) -> None:
        scheme = WebhookSignatureScheme(prefix="sha256=")
        digest = WebhookVerifier().sign(BODY, SECRET)
        assert WebhookVerifier(scheme).verify(envelope({"X-Signature": f"sha1={digest}"}), SECRET) is False

    def test_base64_sha1(self) -> None:
        scheme = WebhookSignatureScheme(header="X-Sig", algorithm="sha1", encoding="base64")
        expected = base64.b64encode(
            hmac.new(SECRET.encode(), BODY, hashlib.sha1).digest()
        ).decode()
        verifier = WebhookVerifier(scheme)
        assert verifier.sign(BODY, SECRET) == expected
        assert verifier.verify(envelope({"X-Sig": expected}), SECRET) is True

    def test_invalid_base64_is_false(self) -> None:
        scheme = WebhookSignatureScheme(encoding="base64")
        assert WebhookVerifier(scheme).verify(envelope({"X-Signature": "***"}), SECRET) is False

    def test_scheme_override_per_call(self) -> None:
        verifier = WebhookVerifier()
        sha512 = WebhookSignatureScheme(algorithm="sha512")
        signature = verifier.sign(BODY, SECRET, scheme=sha512)
        assert len(signature) == 128
        assert verifier.verify(envelope({"X-Signature": signature}), SECRET, scheme=sha512) is True
        assert verifier.verify(envelope({"X-Signature": signature}), SECRET) is False

    def test_unknown_algorithm_rejected_at_definition(self) -> None:
        with pytest.raises(ValidationError):
            WebhookSignatureScheme(algorithm="md5")


# =============================================================================
# Test: Timestamped Scheme
# =============================================================================
class TestTimestampedScheme:
    """Signed payload is "{ts}.{body}" and ts must be within tolerance."""

    SCHEME = WebhookSignatureScheme(timestamp_header="X-Timestamp", tolerance_seconds=300)
    RECEIVED = datetime(2026, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

    def signed(self, sent_at: datetime) -> WebhookEnvelope:
        timestamp = str(int(sent_at.timestamp()))
        signature = WebhookVerifier(self.SCHEME).sign(BODY, SECRET, timestamp=timestamp)
        return envelope(
            {"X-Signature": signature, "X-Timestamp": timestamp},
            received_at=self.RECEIVED,
        )

    def test_fresh_delivery(self) -> None:
        delivery = self.signed(self.RECEIVED - timedelta(seconds=30))
        assert WebhookVerifier(self.SCHEME).verify(delivery, SECRET) is True

    def test_stale_delivery(self) -> None:
        delivery = self.signed(self.RECEIVED - timedelta(minutes=10))
        assert WebhookVerifier(self.SCHEME).verify(delivery, SECRET) is False

    def test_future_delivery_outside_window(self) -> None:
        delivery = self.signed(self.RECEIVED + timedelta(minutes=10))
        assert WebhookVerifier(self.SCHEME).verify(delivery, SECRET) is False

    def test_timestamp_is_part_of_signature(self) -> None:
        delivery = self.signed(self.RECEIVED)
        headers = dict(delivery.headers)
        headers["X-Timestamp"] = str(int(self.RECEIVED.timestamp()) + 1)
        replayed = envelope(headers, received_at=self.RECEIVED)
        assert WebhookVerifier(self.SCHEME).verify(replayed, SECRET) is False

    @pytest.mark.parametrize("timestamp", [None, "yesterday"])
    def test_missing_or_malformed_timestamp(self, timestamp) -> None:
        signature = WebhookVerifier(self.SCHEME).sign(BODY, SECRET, timestamp="0")
        headers = {"X-Signature": signature}
        if timestamp is not None:
            headers["X-Timestamp"] = timestamp
        delivery = envelope(headers, received_at=self.RECEIVED)
        assert WebhookVerifier(self.SCHEME).verify(delivery, SECRET) is False
