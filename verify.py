import hmac, hashlib
import logging
from typing import Iterable, Optional, Union

from errors import WebhookVerificationFailure

log = logging.getLogger("webhook")

_ALGOS = {"sha256": hashlib.sha256, "sha1": hashlib.sha1}


class WebhookVerifier:
    """
    Checks X-Hub-Signature-256 (or the legacy X-Hub-Signature) against every
    configured secret, so a secret can be rotated without dropping deliveries.
    """

    def __init__(self, secrets: Union[str, bytes, Iterable[Union[str, bytes]]]):
        if isinstance(secrets, (str, bytes)):
            secrets = [secrets]
        self._secrets = [s.encode("utf-8") if isinstance(s, str) else bytes(s) for s in secrets]
        self._secrets = [s for s in self._secrets if s]

    @property
    def configured(self) -> bool:
        return bool(self._secrets)

    def verify(self, raw_body: bytes, signature_header: Optional[str]) -> bool:
        if not self._secrets or not signature_header:
            return False
        algo, sep, provided = signature_header.partition("=")
        digest = _ALGOS.get(algo.strip().lower())
        if not sep or digest is None:
            return False
        provided = provided.strip().encode("ascii", "replace")

        matched = False
        for secret in self._secrets:
            expected = hmac.new(secret, raw_body, digest).hexdigest().encode("ascii")
            # no early exit: every secret is compared
            matched |= hmac.compare_digest(expected, provided)
        return matched

    def require(self, raw_body: bytes, signature_header: Optional[str]) -> None:
        if not self.verify(raw_body, signature_header):
            log.warning("signature mismatch provided_suffix=%s tried=%d",
                        (signature_header or "")[-6:], len(self._secrets))
            raise WebhookVerificationFailure("Invalid signature")
