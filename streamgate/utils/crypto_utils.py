import base64
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from Crypto.Hash import HMAC, SHA256

logger = logging.getLogger(__name__)


class TokenFailure(str, Enum):
    BAD_SIGNATURE = "BadSignature"
    SUBJECT_MISMATCH = "SubjectMismatch"
    EXPIRED = "Expired"


@dataclass
class TokenVerification:
    ok: bool
    reason: Optional[TokenFailure] = None
    claims: dict = field(default_factory=dict)


def urlsafe_b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def urlsafe_b64decode(data: str) -> bytes:
    padding_needed = (4 - len(data) % 4) % 4
    return base64.urlsafe_b64decode((data + "=" * padding_needed).encode("ascii"))


class TokenCodec:
    """
    Issues and verifies streaming tokens bound to a single media object.

    A token is ``<payload>.<signature>`` where the payload is the url-safe base64 of
    ``{"media_id", "iat", "exp"[, "sub"]}`` and the signature is an HMAC-SHA256 of the
    encoded payload. Nothing is stored server side; the secret is enough to verify.
    """

    def __init__(self, secret_key: str, clock: Callable[[], float] = time.time):
        self.secret_key = secret_key.encode("utf-8")
        self.clock = clock

    def _mac(self, payload: str) -> HMAC.HMAC:
        return HMAC.new(self.secret_key, payload.encode("ascii"), digestmod=SHA256)

    def issue(self, media_id: int, ttl: int, subject: Optional[int] = None, now: Optional[int] = None) -> str:
        if now is None:
            now = int(self.clock())
        data = {"media_id": media_id, "iat": now, "exp": now + ttl}
        if subject is not None:
            data["sub"] = subject
        payload = urlsafe_b64encode(json.dumps(data, separators=(",", ":")).encode("utf-8"))
        signature = urlsafe_b64encode(self._mac(payload).digest())
        return f"{payload}.{signature}"

    def verify(self, token: str, media_id: int) -> TokenVerification:
        """
        Verify ``token`` for ``media_id``.

        Args:
            token (str): The token supplied by the client.
            media_id (int): The media object being accessed.

        Returns:
            TokenVerification: ``ok`` with the decoded claims, or the failure reason.
        """
        try:
            payload, signature = token.split(".")
            self._mac(payload).verify(urlsafe_b64decode(signature))
            claims = json.loads(urlsafe_b64decode(payload))
        except ValueError as e:
            # covers malformed structure, bad base64, MAC mismatch and bad json
            logger.debug(f"Rejected streaming token for media {media_id}: {e}")
            return TokenVerification(False, TokenFailure.BAD_SIGNATURE)

        if not isinstance(claims, dict) or not isinstance(claims.get("exp"), (int, float)):
            return TokenVerification(False, TokenFailure.BAD_SIGNATURE)

        if claims.get("media_id") != media_id:
            return TokenVerification(False, TokenFailure.SUBJECT_MISMATCH, claims)

        if claims["exp"] < self.clock():
            return TokenVerification(False, TokenFailure.EXPIRED, claims)

        return TokenVerification(True, None, claims)
