from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from streamgate.dependencies import get_gateway, get_request_context
from streamgate.handlers import StreamingGateway, handle_exceptions
from streamgate.schemas import ManifestResponse, MediaType, RequestContext, StreamingTokenResponse

stream_router = APIRouter()
streaming_router = APIRouter()


@stream_router.head("/audio/{media_id}", name="stream_audio")
@stream_router.get("/audio/{media_id}", name="stream_audio")
async def stream_audio(
    media_id: int,
    context: Annotated[RequestContext, Depends(get_request_context)],
    gateway: Annotated[StreamingGateway, Depends(get_gateway)],
):
    """
    Stream an audio file, honoring the Range header.

    Args:
        media_id (int): Id of the audio media object.
        context (RequestContext): Requester, streaming token and Range header.
        gateway (StreamingGateway): The streaming gateway.

    Returns:
        Response: 200 with the full file, 206 with the requested range, or an error.
    """
    try:
        return await gateway.stream(media_id, context, media_type=MediaType.AUDIO)
    except Exception as e:
        return handle_exceptions(e)


@stream_router.head("/{media_id}", name="stream_media")
@stream_router.get("/{media_id}", name="stream_media")
async def stream_media(
    media_id: int,
    context: Annotated[RequestContext, Depends(get_request_context)],
    gateway: Annotated[StreamingGateway, Depends(get_gateway)],
    quality: Annotated[Optional[str], Query(description="Rendition to stream, e.g. 720p.")] = None,
):
    """
    Stream a media file or one of its renditions, honoring the Range header.

    Args:
        media_id (int): Id of the media object.
        context (RequestContext): Requester, streaming token and Range header.
        gateway (StreamingGateway): The streaming gateway.
        quality (str, optional): Rendition label. Defaults to the original upload.

    Returns:
        Response: 200 with the full file, 206 with the requested range, or an error.
    """
    try:
        return await gateway.stream(media_id, context, quality=quality)
    except Exception as e:
        return handle_exceptions(e)


@streaming_router.get("/manifest/{media_id}", response_model=ManifestResponse)
async def streaming_manifest(
    media_id: int,
    context: Annotated[RequestContext, Depends(get_request_context)],
    gateway: Annotated[StreamingGateway, Depends(get_gateway)],
    connection: Annotated[
        str, Query(description="Client connection class: slow, medium or fast. Unknown values count as slow.")
    ] = "medium",
):
    """Generate the adaptive streaming manifest for a video, limited to what the connection can take."""
    try:
        return await gateway.manifest(media_id, context, connection)
    except Exception as e:
        return handle_exceptions(e)


@streaming_router.get("/manifests/{media_id}/{name}", name="streaming_playlist")
async def streaming_playlist(
    media_id: int,
    name: str,
    gateway: Annotated[StreamingGateway, Depends(get_gateway)],
) -> Response:
    """Serve a stored playlist file."""
    try:
        return await gateway.read_playlist(media_id, name)
    except Exception as e:
        return handle_exceptions(e)


@streaming_router.get("/token/{media_id}", response_model=StreamingTokenResponse)
async def streaming_token(
    media_id: int,
    context: Annotated[RequestContext, Depends(get_request_context)],
    gateway: Annotated[StreamingGateway, Depends(get_gateway)],
):
    """Issue a time-limited streaming token and the URL to play the media with it."""
    try:
        return await gateway.issue_token(media_id, context)
    except Exception as e:
        return handle_exceptions(e)
