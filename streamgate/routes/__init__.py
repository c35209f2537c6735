from .streaming import stream_router, streaming_router

__all__ = ["stream_router", "streaming_router"]
