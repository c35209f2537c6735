from datetime import datetime, timezone

import anyio
import pytest

from streamgate.access_policy import AccessPolicy
from streamgate.errors import InvalidRequest, NotFound, NotReady, TransportAbort, Unauthenticated, Unauthorized
from streamgate.handlers import StreamingGateway
from streamgate.quality import rendition_path
from streamgate.schemas import MediaStatus, MediaType, Requester, RequestContext
from streamgate.utils.http_utils import EnhancedStreamingResponse, RangeStreamer

from conftest import NOW, make_media, pattern_bytes

OWNER = Requester(100, "owner-token")
SUBSCRIBER = Requester(200, "subscriber-token")
STRANGER = Requester(300, "stranger-token")


async def run_response(response, disconnect: bool = False) -> list[dict]:
    """Drive an ASGI response and return the messages it sent."""
    messages = []

    async def receive():
        if disconnect:
            return {"type": "http.disconnect"}
        await anyio.sleep_forever()

    async def send(message):
        messages.append(message)

    await response({"type": "http", "method": "GET"}, receive, send)
    return messages


def body_of(messages: list[dict]) -> bytes:
    return b"".join(message.get("body", b"") for message in messages if message["type"] == "http.response.body")


@pytest.fixture
def video(repository, write_file):
    media = make_media(1, file_size_bytes=50_000)
    repository.add(media)
    write_file(media.file_path, pattern_bytes(50_000))
    return media


@pytest.fixture
def audio(repository, write_file):
    media = make_media(2, file_path="uploads/2.mp3", file_type=MediaType.AUDIO, mime_type="audio/mpeg", is_public=True)
    repository.add(media)
    write_file(media.file_path, pattern_bytes(3_000))
    return media


@pytest.mark.asyncio
async def test_owner_streams_requested_range(gateway, video):
    context = RequestContext(requester=OWNER, range_header="bytes=1000-1999")

    response = await gateway.stream(video.media_id, context)
    messages = await run_response(response)

    assert response.status_code == 206
    assert response.headers["content-range"] == "bytes 1000-1999/50000"
    assert response.headers["content-length"] == "1000"
    assert body_of(messages) == pattern_bytes(50_000)[1000:2000]
    assert response.body_iterator.closed


@pytest.mark.asyncio
async def test_missing_media_is_not_found(gateway):
    with pytest.raises(NotFound, match="Media file not found"):
        await gateway.stream(999, RequestContext(requester=OWNER))


@pytest.mark.asyncio
async def test_audio_route_rejects_video_objects(gateway, video):
    with pytest.raises(NotFound, match="Audio not found"):
        await gateway.stream(video.media_id, RequestContext(requester=OWNER), media_type=MediaType.AUDIO)


@pytest.mark.asyncio
async def test_anonymous_private_request_is_unauthenticated(gateway, video):
    with pytest.raises(Unauthenticated) as exc_info:
        await gateway.stream(video.media_id, RequestContext())

    assert exc_info.value.reason == "AuthenticationRequired"


@pytest.mark.asyncio
async def test_stranger_is_unauthorized(gateway, video):
    with pytest.raises(Unauthorized):
        await gateway.stream(video.media_id, RequestContext(requester=STRANGER))


@pytest.mark.asyncio
async def test_processing_media_is_locked(gateway, repository):
    repository.add(make_media(5, status=MediaStatus.PROCESSING, is_public=True))

    with pytest.raises(NotReady) as exc_info:
        await gateway.stream(5, RequestContext())

    assert exc_info.value.status_code == 423


@pytest.mark.asyncio
async def test_ready_media_without_a_file_is_not_found(gateway, repository):
    repository.add(make_media(6, is_public=True))

    with pytest.raises(NotFound):
        await gateway.stream(6, RequestContext())


@pytest.mark.asyncio
async def test_quality_streams_the_rendition(gateway, video, write_file):
    rendition = write_file(rendition_path(video.media_id, "720p"), b"rendition-bytes")

    response = await gateway.stream(video.media_id, RequestContext(requester=OWNER), quality="720p")

    assert response.headers["content-type"] == "video/mp4"
    assert body_of(await run_response(response)) == rendition


@pytest.mark.asyncio
async def test_unknown_quality_is_a_bad_request(gateway, video):
    with pytest.raises(InvalidRequest):
        await gateway.stream(video.media_id, RequestContext(requester=OWNER), quality="4k")


@pytest.mark.asyncio
async def test_missing_rendition_is_not_found(gateway, video):
    with pytest.raises(NotFound, match="Rendition 1080p not found"):
        await gateway.stream(video.media_id, RequestContext(requester=OWNER), quality="1080p")


@pytest.mark.asyncio
async def test_head_returns_headers_and_closes_the_file(gateway, audio):
    response = await gateway.stream(audio.media_id, RequestContext(method="HEAD"), media_type=MediaType.AUDIO)

    assert response.status_code == 200
    assert response.headers["content-length"] == "3000"
    assert response.headers["accept-ranges"] == "bytes"
    assert response.body == b""


@pytest.mark.asyncio
async def test_unsatisfiable_range_is_416(gateway, audio):
    response = await gateway.stream(audio.media_id, RequestContext(range_header="bytes=5000-"))

    assert response.status_code == 416
    assert response.headers["content-range"] == "bytes */3000"


@pytest.mark.asyncio
async def test_playback_from_the_first_byte_is_recorded(gateway, audio, usage, counter):
    for range_header in [None, "bytes=0-99", "bytes=100-199", "bytes=9000-"]:
        response = await gateway.stream(audio.media_id, RequestContext(range_header=range_header))
        if isinstance(response, EnhancedStreamingResponse):
            await run_response(response)
    await usage.drain()

    assert await counter.get("play_count", audio.media_id) == 2


@pytest.mark.asyncio
async def test_head_and_denied_requests_are_not_recorded(gateway, video, usage, counter):
    await gateway.stream(video.media_id, RequestContext(requester=OWNER, method="HEAD"))
    with pytest.raises(Unauthorized):
        await gateway.stream(video.media_id, RequestContext(requester=STRANGER))
    await usage.drain()

    assert await counter.get("view_count", video.media_id) == 0


@pytest.mark.asyncio
async def test_client_disconnect_releases_the_file(gateway, video):
    response = await gateway.stream(video.media_id, RequestContext(requester=OWNER))

    await run_response(response, disconnect=True)

    assert response.body_iterator.closed


@pytest.mark.asyncio
async def test_truncated_file_aborts_after_headers(gateway, video, store):
    file_handle = await store.open(video.file_path)
    result = await RangeStreamer(chunk_size=8192).stream(file_handle, 60_000, None, "video/mp4")
    response = EnhancedStreamingResponse(result.body, status_code=result.status_code, headers=result.headers)

    messages = []

    async def receive():
        await anyio.sleep_forever()

    async def send(message):
        messages.append(message)

    with pytest.raises(TransportAbort):
        await response({"type": "http", "method": "GET"}, receive, send)

    assert messages[0]["type"] == "http.response.start"
    assert len(body_of(messages)) == 50_000
    assert result.body.closed


@pytest.mark.asyncio
async def test_manifest_lists_permitted_renditions(gateway, video, write_file, store):
    for quality in ("480p", "720p", "1080p"):
        write_file(rendition_path(video.media_id, quality), b"\x00")

    manifest = await gateway.manifest(video.media_id, RequestContext(requester=OWNER), "medium")

    assert manifest.available_qualities == ["480p", "720p"]
    assert manifest.recommended_quality == "720p"
    assert manifest.manifest_url == "http://testserver/streaming/manifests/1/playlist.m3u8"
    assert manifest.expires_at == datetime.fromtimestamp(NOW + 7200, tz=timezone.utc)
    stored = await store.read_text("manifests/1/playlist.m3u8")
    assert "quality_720p.m3u8" in stored
    assert "quality_1080p.m3u8" not in stored


@pytest.mark.asyncio
async def test_manifest_is_only_for_videos(gateway, audio):
    with pytest.raises(NotFound, match="Video not found"):
        await gateway.manifest(audio.media_id, RequestContext(), "fast")


@pytest.mark.asyncio
async def test_manifest_requires_access(gateway, video):
    with pytest.raises(Unauthorized):
        await gateway.manifest(video.media_id, RequestContext(requester=STRANGER), "fast")


@pytest.mark.asyncio
async def test_manifest_urls_point_at_the_cdn_when_configured(gateway, video):
    gateway.store.cdn_base_url = "https://cdn.example.com"

    manifest = await gateway.manifest(video.media_id, RequestContext(requester=OWNER), "slow")

    assert manifest.manifest_url == "https://cdn.example.com/manifests/1/playlist.m3u8"
    assert manifest.available_qualities == []


@pytest.mark.asyncio
async def test_read_playlist_serves_stored_playlists_only(gateway, video):
    await gateway.manifest(video.media_id, RequestContext(requester=OWNER), "fast")

    response = await gateway.read_playlist(video.media_id, "playlist.m3u8")
    assert response.body.startswith(b"#EXTM3U")

    with pytest.raises(NotFound):
        await gateway.read_playlist(video.media_id, "secret.txt")
    with pytest.raises(NotFound):
        await gateway.read_playlist(video.media_id, "quality_480p.m3u8")


@pytest.mark.asyncio
async def test_issued_token_grants_the_streaming_url(gateway, video, codec):
    issued = await gateway.issue_token(video.media_id, RequestContext(requester=SUBSCRIBER))

    assert issued.streaming_url == f"http://testserver/stream/1?token={issued.streaming_token}"
    assert issued.expires_at == datetime.fromtimestamp(NOW + 3600, tz=timezone.utc)
    verification = codec.verify(issued.streaming_token, video.media_id)
    assert verification.ok
    assert verification.claims["sub"] == 200


@pytest.mark.asyncio
async def test_audio_tokens_point_at_the_audio_route(gateway, audio):
    issued = await gateway.issue_token(audio.media_id, RequestContext())

    assert issued.streaming_url.startswith("http://testserver/stream/audio/2?token=")


@pytest.mark.asyncio
async def test_token_is_not_issued_without_access(gateway, video):
    with pytest.raises(Unauthorized):
        await gateway.issue_token(video.media_id, RequestContext(requester=STRANGER))


@pytest.mark.asyncio
async def test_expired_token_is_rejected_when_streaming(gateway, video, clock):
    issued = await gateway.issue_token(video.media_id, RequestContext(requester=OWNER))
    clock.advance(3601)

    with pytest.raises(Unauthenticated) as exc_info:
        await gateway.stream(video.media_id, RequestContext(requester=OWNER, token=issued.streaming_token))

    assert exc_info.value.reason == "InvalidToken"


class TickingClock:
    """Moves forward on every read, so consecutive reads can fall in different seconds."""

    def __init__(self, now: float, step: float):
        self.now = now
        self.step = step

    def __call__(self) -> float:
        current = self.now
        self.now += self.step
        return current


@pytest.mark.asyncio
async def test_token_expiry_matches_the_signed_claim(gateway, video, codec):
    codec.clock = TickingClock(NOW + 0.7, step=0.6)

    issued = await gateway.issue_token(video.media_id, RequestContext(requester=OWNER))

    claims = codec.verify(issued.streaming_token, video.media_id).claims
    assert issued.expires_at == datetime.fromtimestamp(claims["exp"], tz=timezone.utc)
    assert claims["exp"] - claims["iat"] == 3600


@pytest.mark.asyncio
async def test_zero_ttls_are_honored(repository, store, codec, oracle, usage, video):
    gateway = StreamingGateway(
        repository=repository,
        store=store,
        policy=AccessPolicy(codec, oracle, entitlement_timeout=0),
        streamer=RangeStreamer(chunk_size=4096, enable_progress=False),
        usage=usage,
        codec=codec,
        token_ttl=0,
        manifest_ttl=0,
        public_base_url="http://testserver",
    )

    issued = await gateway.issue_token(video.media_id, RequestContext(requester=OWNER))
    manifest = await gateway.manifest(video.media_id, RequestContext(requester=OWNER), "fast")

    assert gateway.policy.entitlement_timeout == 0
    assert issued.expires_at == datetime.fromtimestamp(NOW, tz=timezone.utc)
    assert manifest.expires_at == datetime.fromtimestamp(NOW, tz=timezone.utc)
