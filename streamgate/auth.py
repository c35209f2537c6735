import logging
from typing import Optional, Protocol

import httpx

from streamgate.configs import settings
from streamgate.schemas import Requester
from streamgate.utils.http_utils import create_httpx_client

logger = logging.getLogger(__name__)


class Authenticator(Protocol):
    async def authenticate(self, bearer_token: Optional[str]) -> Optional[Requester]: ...


class HttpAuthenticator:
    """Resolves a bearer token to a requester with the auth service. Anonymous on any failure."""

    def __init__(self, auth_service_url: Optional[str], transport: Optional[httpx.AsyncBaseTransport] = None):
        self.auth_service_url = auth_service_url.rstrip("/") if auth_service_url else None
        self.transport = transport

    @classmethod
    def from_settings(cls) -> "HttpAuthenticator":
        return cls(settings.auth_service_url)

    async def authenticate(self, bearer_token: Optional[str]) -> Optional[Requester]:
        if not bearer_token or not self.auth_service_url:
            return None

        kwargs = {"headers": {"Authorization": f"Bearer {bearer_token}", "Accept": "application/json"}}
        if self.transport is not None:
            kwargs["transport"] = self.transport

        try:
            async with create_httpx_client(**kwargs) as client:
                response = await client.get(f"{self.auth_service_url}/api/auth/user")
        except httpx.HTTPError as e:
            logger.error(f"Failed to validate token with auth service: {e}")
            return None

        if response.status_code != 200:
            logger.warning(f"Auth service returned {response.status_code} for token {bearer_token[:10]}...")
            return None

        try:
            user_id = response.json().get("user_id")
            if user_id is None:
                logger.warning("Auth service response did not include a user_id")
                return None
            return Requester(user_id=int(user_id), bearer_token=bearer_token)
        except (ValueError, AttributeError, TypeError) as e:
            # covers non-json bodies, non-object json and non-numeric ids
            logger.warning(f"Auth service returned an unusable user payload: {e}")
            return None


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()
