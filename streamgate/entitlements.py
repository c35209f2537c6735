import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from streamgate.configs import settings
from streamgate.const import PREMIUM_ENTITY_TYPES
from streamgate.errors import UpstreamTimeout
from streamgate.schemas import MediaObject
from streamgate.utils.http_utils import create_httpx_client

logger = logging.getLogger(__name__)

ENTITY_ACCESS_ROUTES = {
    "exercise": "exercises",
    "workout": "workouts",
}


@dataclass(frozen=True)
class EntitlementContext:
    media_id: int
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    bearer_token: Optional[str] = None

    @classmethod
    def for_media(cls, media: MediaObject, bearer_token: Optional[str] = None) -> "EntitlementContext":
        return cls(media.media_id, media.entity_type, media.entity_id, bearer_token)


class EntitlementOracle(Protocol):
    async def has_access(self, user_id: int, context: EntitlementContext) -> bool: ...


class HttpEntitlementOracle:
    """
    Answers access questions through the auth and content services.

    A user must validate with the auth service, hold a premium subscription for
    premium entity types, and pass the content service's check when the media is
    bound to an exercise or workout. Transport errors propagate; the caller decides
    how to treat them.
    """

    def __init__(
        self,
        auth_service_url: Optional[str],
        content_service_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.auth_service_url = auth_service_url.rstrip("/") if auth_service_url else None
        self.content_service_url = content_service_url.rstrip("/") if content_service_url else None
        self.transport = transport

    @classmethod
    def from_settings(cls) -> "HttpEntitlementOracle":
        return cls(settings.auth_service_url, settings.content_service_url)

    def _client(self, context: EntitlementContext) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if context.bearer_token:
            headers["Authorization"] = f"Bearer {context.bearer_token}"
        kwargs = {"headers": headers}
        if self.transport is not None:
            kwargs["transport"] = self.transport
        return create_httpx_client(**kwargs)

    async def has_access(self, user_id: int, context: EntitlementContext) -> bool:
        try:
            return await self._has_access(user_id, context)
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"Entitlement service timed out for user {user_id}: {e}") from e

    async def _has_access(self, user_id: int, context: EntitlementContext) -> bool:
        if not self.auth_service_url:
            logger.warning("AUTH_SERVICE_URL is not configured, denying entitlement")
            return False

        async with self._client(context) as client:
            response = await client.get(f"{self.auth_service_url}/auth/validate/{user_id}")
            if response.status_code != 200:
                logger.info(f"User {user_id} failed validation with status {response.status_code}")
                return False

            if context.entity_type in PREMIUM_ENTITY_TYPES:
                subscription = await self._get_subscription(client, user_id)
                if not subscription.get("has_premium"):
                    return False

            route = ENTITY_ACCESS_ROUTES.get(context.entity_type or "")
            if route:
                return await self._has_entity_access(client, route, context.entity_id, user_id)

        return True

    async def _get_subscription(self, client: httpx.AsyncClient, user_id: int) -> dict:
        response = await client.get(f"{self.auth_service_url}/auth/user-subscription/{user_id}")
        if response.status_code == 200:
            return response.json()
        logger.warning(f"Subscription lookup for user {user_id} returned {response.status_code}")
        return {"has_premium": False, "subscription_type": "free"}

    async def _has_entity_access(
        self, client: httpx.AsyncClient, route: str, entity_id: Optional[int], user_id: int
    ) -> bool:
        if not entity_id:
            return True
        if not self.content_service_url:
            logger.warning(f"CONTENT_SERVICE_URL is not configured, denying {route} access")
            return False

        response = await client.get(f"{self.content_service_url}/{route}/{entity_id}/access/{user_id}")
        if response.status_code != 200:
            return False
        return bool(response.json().get("has_access", False))
