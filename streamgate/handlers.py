import logging
import re
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Optional

from fastapi import Response
from fastapi.responses import JSONResponse

from .access_policy import AccessPolicy, Decision, denial_error
from .configs import settings
from .const import HLS_MEDIA_TYPE, MANIFEST_PATH_TEMPLATE, QUALITY_PRIORITY, RENDITION_MIME_TYPE
from .errors import InvalidRequest, NotFound, StreamingError
from .manifest import ManifestBuilder
from .quality import QualityResolver, rendition_path
from .repository import MediaRepository
from .schemas import ManifestResponse, MediaObject, MediaType, RequestContext, StreamingTokenResponse
from .storage import FileStore
from .usage import ClientInfo, UsageRecorder
from .utils.crypto_utils import TokenCodec
from .utils.http_utils import EnhancedStreamingResponse, RangeStreamer, StreamResult

logger = logging.getLogger(__name__)

PLAYLIST_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.-]*\.m3u8$")


def handle_exceptions(exception: Exception) -> Response:
    """
    Handle exceptions and return appropriate HTTP responses.

    Args:
        exception (Exception): The exception that was raised.

    Returns:
        Response: An HTTP response corresponding to the exception type.
    """
    if isinstance(exception, StreamingError):
        logger.info(f"Request failed with {exception.status_code}: {exception.message}")
        return JSONResponse(
            status_code=exception.status_code,
            content={"error": exception.message, "reason": exception.reason},
        )
    logger.exception(f"Internal server error while handling request: {exception}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


class StreamingGateway:
    """Runs lookup, access control, streaming and usage tracking for each request."""

    def __init__(
        self,
        repository: MediaRepository,
        store: FileStore,
        policy: AccessPolicy,
        streamer: RangeStreamer,
        usage: UsageRecorder,
        codec: TokenCodec,
        quality_resolver: Optional[QualityResolver] = None,
        manifest_builder: Optional[ManifestBuilder] = None,
        token_ttl: Optional[int] = None,
        manifest_ttl: Optional[int] = None,
        public_base_url: Optional[str] = None,
    ):
        self.repository = repository
        self.store = store
        self.policy = policy
        self.streamer = streamer
        self.usage = usage
        self.codec = codec
        self.quality_resolver = quality_resolver or QualityResolver(store)
        self.manifest_builder = manifest_builder or ManifestBuilder()
        self.token_ttl = settings.token_ttl if token_ttl is None else token_ttl
        self.manifest_ttl = settings.manifest_ttl if manifest_ttl is None else manifest_ttl
        self.public_base_url = (public_base_url or settings.public_base_url or "").rstrip("/")

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.codec.clock(), tz=timezone.utc)

    def _base_url(self, context: RequestContext) -> str:
        return self.public_base_url or context.base_url.rstrip("/")

    async def _load(self, media_id: int, media_type: Optional[MediaType] = None) -> MediaObject:
        media = await self.repository.get(media_id)
        if media is None or (media_type is not None and media.file_type != media_type):
            label = media_type.value.capitalize() if media_type else "Media file"
            raise NotFound(f"{label} not found")
        return media

    async def _authorize(self, media: MediaObject, context: RequestContext) -> Decision:
        decision = await self.policy.authorize(media, context.requester, context.token)
        if not decision.allowed:
            logger.info(
                f"Access denied to media {media.media_id} for user {context.user_id}: {decision.reason.value}"
            )
            raise denial_error(decision)
        logger.debug(f"Access granted to media {media.media_id} for user {context.user_id}: {decision.reason.value}")
        return decision

    async def stream(
        self,
        media_id: int,
        context: RequestContext,
        media_type: Optional[MediaType] = None,
        quality: Optional[str] = None,
    ) -> Response:
        """
        Serve the bytes of a media object, or one of its renditions.

        Args:
            media_id (int): Id of the media object.
            context (RequestContext): The incoming request.
            media_type (MediaType, optional): Restrict the lookup to one file type.
            quality (str, optional): Rendition label to serve instead of the original file.

        Returns:
            Response: 200/206 streaming response, 416, or a body-less response for HEAD.
        """
        media = await self._load(media_id, media_type)
        await self._authorize(media, context)

        path, mime_type = media.file_path, media.mime_type
        if quality is not None:
            if quality not in QUALITY_PRIORITY:
                raise InvalidRequest(f"Unknown quality {quality!r}, expected one of {', '.join(QUALITY_PRIORITY)}")
            path, mime_type = rendition_path(media.media_id, quality), RENDITION_MIME_TYPE

        if not await self.store.exists(path):
            if quality is None:
                logger.error(f"Media {media.media_id} is ready but {path} is missing from storage")
            raise NotFound("Media file not found" if quality is None else f"Rendition {quality} not found")

        try:
            total_size = await self.store.size(path)
            file_handle = await self.store.open(path)
        except FileNotFoundError:
            logger.error(f"Media {media.media_id} file {path} disappeared before it could be opened")
            raise NotFound("Media file not found")

        result = await self.streamer.stream(file_handle, total_size, context.range_header, mime_type)

        if result.body is None:
            return Response(status_code=result.status_code, headers=result.headers)

        if context.method == "HEAD":
            await result.body.aclose()
            return Response(status_code=result.status_code, headers=result.headers)

        on_start = None
        if self._is_playback_start(result):
            on_start = partial(
                self.usage.dispatch, media, context.user_id, ClientInfo(context.client_ip, context.user_agent)
            )

        return EnhancedStreamingResponse(
            result.body,
            status_code=result.status_code,
            headers=result.headers,
            on_start=on_start,
        )

    @staticmethod
    def _is_playback_start(result: StreamResult) -> bool:
        # players issue many range requests while seeking; only reads from the first byte count as a play
        return result.status_code == 200 or result.body.start == 0

    async def manifest(self, media_id: int, context: RequestContext, connection: Optional[str]) -> ManifestResponse:
        media = await self._load(media_id, MediaType.VIDEO)
        await self._authorize(media, context)

        selection = await self.quality_resolver.resolve(media.media_id, connection)
        manifest_text = self.manifest_builder.build(media, selection.available)
        manifest_path = MANIFEST_PATH_TEMPLATE.format(media_id=media.media_id)
        await self.store.put_text(manifest_path, manifest_text)

        return ManifestResponse(
            manifest_url=self.store.url(manifest_path, self._base_url(context)),
            available_qualities=selection.available,
            recommended_quality=selection.recommended,
            expires_at=self._now() + timedelta(seconds=self.manifest_ttl),
        )

    async def read_playlist(self, media_id: int, name: str) -> Response:
        if not PLAYLIST_NAME_PATTERN.match(name):
            raise NotFound("Playlist not found")
        path = f"manifests/{media_id}/{name}"
        if not await self.store.exists(path):
            raise NotFound("Playlist not found")
        return Response(content=await self.store.read_text(path), media_type=HLS_MEDIA_TYPE)

    async def issue_token(self, media_id: int, context: RequestContext) -> StreamingTokenResponse:
        media = await self._load(media_id)
        await self._authorize(media, context)

        issued_at = int(self.codec.clock())
        token = self.codec.issue(media.media_id, self.token_ttl, subject=context.user_id, now=issued_at)

        return StreamingTokenResponse(
            streaming_token=token,
            expires_at=datetime.fromtimestamp(issued_at + self.token_ttl, tz=timezone.utc),
            streaming_url=self.build_streaming_url(media, token, context),
        )

    def build_streaming_url(self, media: MediaObject, token: str, context: RequestContext) -> str:
        route = "/stream/audio" if media.file_type == MediaType.AUDIO else "/stream"
        return f"{self._base_url(context)}{route}/{media.media_id}?token={token}"
