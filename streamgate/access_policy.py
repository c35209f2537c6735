"""
Access decisions for media objects.

``AccessPolicy.authorize`` walks a fixed ladder and returns the first decision
that applies; cheap local checks run before the entitlement oracle, which is the
only step that may do network I/O. Decisions are returned, never raised.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from streamgate.configs import settings
from streamgate.entitlements import EntitlementContext, EntitlementOracle
from streamgate.errors import NotReady, StreamingError, Unauthenticated, Unauthorized, UpstreamTimeout
from streamgate.schemas import MediaObject, Requester
from streamgate.utils.crypto_utils import TokenCodec

logger = logging.getLogger(__name__)


class DecisionReason(str, Enum):
    PUBLIC_CONTENT = "PublicContent"
    OWNER = "Owner"
    GRANTED = "Granted"
    CONTENT_INACTIVE = "ContentInactive"
    CONTENT_NOT_READY = "ContentNotReady"
    AUTHENTICATION_REQUIRED = "AuthenticationRequired"
    INVALID_TOKEN = "InvalidToken"
    INSUFFICIENT_PERMISSIONS = "InsufficientPermissions"


@dataclass(frozen=True)
class Allow:
    reason: DecisionReason
    allowed = True


@dataclass(frozen=True)
class Deny:
    reason: DecisionReason
    detail: Optional[str] = None
    allowed = False


Decision = Union[Allow, Deny]

DENIAL_ERRORS = {
    DecisionReason.CONTENT_INACTIVE: (NotReady, "Content is not active"),
    DecisionReason.CONTENT_NOT_READY: (NotReady, "Content is not ready for streaming"),
    DecisionReason.AUTHENTICATION_REQUIRED: (Unauthenticated, "Authentication required"),
    DecisionReason.INVALID_TOKEN: (Unauthenticated, "Invalid streaming token"),
    DecisionReason.INSUFFICIENT_PERMISSIONS: (Unauthorized, "Insufficient permissions"),
}


def denial_error(decision: Deny) -> StreamingError:
    """Map a denial to the error carrying its HTTP status."""
    error_cls, message = DENIAL_ERRORS[decision.reason]
    if decision.detail:
        message = f"{message}: {decision.detail}"
    return error_cls(message, reason=decision.reason.value)


class AccessPolicy:
    def __init__(
        self,
        codec: TokenCodec,
        oracle: EntitlementOracle,
        entitlement_timeout: Optional[float] = None,
    ):
        self.codec = codec
        self.oracle = oracle
        self.entitlement_timeout = settings.entitlement_timeout if entitlement_timeout is None else entitlement_timeout

    async def authorize(
        self, media: MediaObject, requester: Optional[Requester], supplied_token: Optional[str]
    ) -> Decision:
        """
        Decide whether ``requester`` may read ``media``.

        Args:
            media (MediaObject): The object being requested.
            requester (Requester, optional): The authenticated user, if any.
            supplied_token (str, optional): Streaming token sent with the request.

        Returns:
            Decision: ``Allow`` or ``Deny`` with the reason of the first rule that applied.
        """
        if not media.is_active:
            return Deny(DecisionReason.CONTENT_INACTIVE)

        if not media.is_ready:
            return Deny(DecisionReason.CONTENT_NOT_READY)

        if media.is_public:
            return Allow(DecisionReason.PUBLIC_CONTENT)

        if requester is None:
            return Deny(DecisionReason.AUTHENTICATION_REQUIRED)

        if supplied_token:
            verification = self.codec.verify(supplied_token, media.media_id)
            if not verification.ok:
                return Deny(DecisionReason.INVALID_TOKEN, verification.reason.value)

        if media.uploaded_by is not None and media.uploaded_by == requester.user_id:
            return Allow(DecisionReason.OWNER)

        return await self._check_entitlement(media, requester)

    async def _check_entitlement(self, media: MediaObject, requester: Requester) -> Decision:
        context = EntitlementContext.for_media(media, requester.bearer_token)
        try:
            granted = await asyncio.wait_for(
                self.oracle.has_access(requester.user_id, context), timeout=self.entitlement_timeout
            )
        except (asyncio.TimeoutError, UpstreamTimeout):
            logger.warning(
                f"Entitlement check timed out "
                f"(user {requester.user_id}, media {media.media_id})"
            )
            return Deny(DecisionReason.INSUFFICIENT_PERMISSIONS, "UpstreamTimeout")
        except Exception as e:
            logger.warning(f"Failed to check user permissions (user {requester.user_id}, media {media.media_id}): {e}")
            return Deny(DecisionReason.INSUFFICIENT_PERMISSIONS, "UpstreamError")

        if granted:
            return Allow(DecisionReason.GRANTED)
        return Deny(DecisionReason.INSUFFICIENT_PERMISSIONS)
