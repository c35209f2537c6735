from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, Query, Request

from streamgate.access_policy import AccessPolicy
from streamgate.auth import Authenticator, HttpAuthenticator, extract_bearer_token
from streamgate.configs import settings
from streamgate.entitlements import HttpEntitlementOracle
from streamgate.handlers import StreamingGateway
from streamgate.repository import InMemoryMediaRepository
from streamgate.schemas import RequestContext
from streamgate.storage import LocalFileStore
from streamgate.usage import UsageRecorder, create_play_counter
from streamgate.utils.crypto_utils import TokenCodec
from streamgate.utils.http_utils import RangeStreamer, get_client_ip, get_original_scheme


@lru_cache(maxsize=1)
def get_usage_recorder() -> UsageRecorder:
    return UsageRecorder(create_play_counter())


@lru_cache(maxsize=1)
def get_gateway() -> StreamingGateway:
    """Build the production object graph once per process."""
    codec = TokenCodec(settings.streaming_secret)
    store = LocalFileStore.from_settings()
    return StreamingGateway(
        repository=InMemoryMediaRepository.from_settings(),
        store=store,
        policy=AccessPolicy(codec, HttpEntitlementOracle.from_settings()),
        streamer=RangeStreamer(),
        usage=get_usage_recorder(),
        codec=codec,
    )


@lru_cache(maxsize=1)
def get_authenticator() -> Authenticator:
    return HttpAuthenticator.from_settings()


async def get_request_context(
    request: Request,
    authenticator: Annotated[Authenticator, Depends(get_authenticator)],
    token: Annotated[Optional[str], Query(description="Streaming token issued by /streaming/token.")] = None,
) -> RequestContext:
    """Collect the typed request context: requester, streaming token, Range header and client details."""
    requester = await authenticator.authenticate(extract_bearer_token(request.headers.get("Authorization")))
    base_url = str(request.base_url.replace(scheme=get_original_scheme(request))).rstrip("/")
    return RequestContext(
        requester=requester,
        token=token,
        range_header=request.headers.get("Range"),
        client_ip=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
        method=request.method,
        base_url=base_url,
    )
