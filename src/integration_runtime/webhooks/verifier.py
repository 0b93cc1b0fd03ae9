"""
integration_runtime.webhooks.verifier - HMAC Signature Verification
=====================================================================

Inbound webhooks are authenticated by an HMAC the sender computes over the
raw request body with a shared secret. Verification MUST run on the exact
bytes received: re-serialized JSON is not byte-identical and would not
verify.

Each connector declares its vendor's convention as a WebhookSignatureScheme:

    Vendor style                    Scheme
    ─────────────────────────────   ─────────────────────────────────────────
    X-Signature: <hex sha256>       WebhookSignatureScheme()
    X-Hub-Signature-256: sha256=…   WebhookSignatureScheme(header="X-Hub-Signature-256",
                                                           prefix="sha256=")
    base64 sha1 in X-Sig            WebhookSignatureScheme(header="X-Sig",
                                                           algorithm="sha1",
                                                           encoding="base64")
    signed "{ts}.{body}" + ts hdr   WebhookSignatureScheme(timestamp_header="X-Timestamp")

Comparison always goes through ``hmac.compare_digest``. A missing,
mis-prefixed or undecodable signature verifies as False; it never raises.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from typing import Literal, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from integration_runtime.core.models import WebhookEnvelope

logger = structlog.get_logger()

Secret = Union[str, bytes, SecretStr]

_DIGESTS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}


class WebhookSignatureScheme(BaseModel):
    """How a vendor signs its webhook deliveries.

    Attributes:
        header: Header carrying the signature.
        algorithm: HMAC digest algorithm.
        encoding: How the digest is rendered in the header.
        prefix: Literal text before the digest (e.g. "sha256=").
        timestamp_header: If set, the signed payload is
            ``b"{timestamp}." + body`` and the timestamp must be within
            ``tolerance_seconds`` of the envelope's arrival time.
        tolerance_seconds: Replay window for timestamped schemes.
    """

    model_config = ConfigDict(frozen=True)

    header: str = Field(default="X-Signature", min_length=1)
    algorithm: Literal["sha1", "sha256", "sha512"] = "sha256"
    encoding: Literal["hex", "base64"] = "hex"
    prefix: str = ""
    timestamp_header: Optional[str] = None
    tolerance_seconds: float = Field(default=300.0, gt=0)


def _secret_bytes(secret: Secret) -> bytes:
    if isinstance(secret, SecretStr):
        secret = secret.get_secret_value()
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    return secret


class WebhookVerifier:
    """Computes and checks webhook signatures for one scheme.

    Example:
        >>> verifier = WebhookVerifier(WebhookSignatureScheme(prefix="sha256="))
        >>> header = verifier.sign(b'{"event":"push"}', "s3cr3t")
        >>> envelope = WebhookEnvelope.from_request(
        ...     b'{"event":"push"}', {"X-Signature": header}
        ... )
        >>> verifier.verify(envelope, "s3cr3t")
        True
    """

    def __init__(self, scheme: Optional[WebhookSignatureScheme] = None) -> None:
        self.scheme = scheme or WebhookSignatureScheme()
        self._logger = logger.bind(component="webhook_verifier")

    def sign(
        self,
        body: bytes,
        secret: Secret,
        *,
        timestamp: Optional[Union[int, str]] = None,
        scheme: Optional[WebhookSignatureScheme] = None,
    ) -> str:
        """Render the signature header value a sender would attach to ``body``."""
        scheme = scheme or self.scheme
        digest = self._digest(body, secret, scheme, timestamp)
        if scheme.encoding == "base64":
            rendered = base64.b64encode(digest).decode("ascii")
        else:
            rendered = digest.hex()
        return f"{scheme.prefix}{rendered}"

    def verify(
        self,
        envelope: WebhookEnvelope,
        secret: Optional[Secret],
        *,
        scheme: Optional[WebhookSignatureScheme] = None,
    ) -> bool:
        """Return True iff the envelope carries a valid signature for ``secret``."""
        scheme = scheme or self.scheme
        if not secret:
            return self._reject("no_secret_configured")

        received = envelope.header(scheme.header)
        if not received:
            return self._reject("signature_missing", header=scheme.header)
        received = received.strip()

        if scheme.prefix:
            if not received.startswith(scheme.prefix):
                return self._reject("signature_prefix_mismatch")
            received = received[len(scheme.prefix):]

        timestamp: Optional[str] = None
        if scheme.timestamp_header is not None:
            timestamp = envelope.header(scheme.timestamp_header)
            if not self._timestamp_fresh(timestamp, envelope, scheme):
                return False

        provided = self._decode(received, scheme)
        if provided is None:
            return self._reject("signature_malformed")

        expected = self._digest(envelope.body, secret, scheme, timestamp)
        if not hmac.compare_digest(expected, provided):
            return self._reject("signature_mismatch")
        return True

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _digest(
        body: bytes,
        secret: Secret,
        scheme: WebhookSignatureScheme,
        timestamp: Optional[Union[int, str]],
    ) -> bytes:
        payload = body if timestamp is None else f"{timestamp}.".encode("utf-8") + body
        return hmac.new(_secret_bytes(secret), payload, _DIGESTS[scheme.algorithm]).digest()

    @staticmethod
    def _decode(value: str, scheme: WebhookSignatureScheme) -> Optional[bytes]:
        try:
            if scheme.encoding == "base64":
                return base64.b64decode(value, validate=True)
            return bytes.fromhex(value)
        except (binascii.Error, ValueError):
            return None

    def _timestamp_fresh(
        self,
        timestamp: Optional[str],
        envelope: WebhookEnvelope,
        scheme: WebhookSignatureScheme,
    ) -> bool:
        if not timestamp:
            return self._reject("timestamp_missing", header=scheme.timestamp_header)
        try:
            sent_at = float(timestamp)
        except ValueError:
            return self._reject("timestamp_malformed")
        age = abs(envelope.received_at.timestamp() - sent_at)
        if age > scheme.tolerance_seconds:
            return self._reject("timestamp_outside_tolerance", age_seconds=round(age, 1))
        return True

    def _reject(self, reason: str, **fields: object) -> bool:
        self._logger.debug("webhook_signature_invalid", reason=reason, **fields)
        return False
