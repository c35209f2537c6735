import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from streamgate.configs import settings
from streamgate.dependencies import get_usage_recorder
from streamgate.middleware import DocsAccessControlMiddleware
from streamgate.routes import stream_router, streaming_router
from streamgate.utils.redis_utils import close_redis

logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # let in-flight play records land before the counters go away
    await get_usage_recorder().drain()
    await close_redis()
    logger.info("Streaming service stopped")


app = FastAPI(title="streamgate", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Range", "Content-Length", "Accept-Ranges"],
)
app.add_middleware(DocsAccessControlMiddleware)


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "streamgate"}


app.include_router(stream_router, prefix="/stream", tags=["stream"])
app.include_router(streaming_router, prefix="/streaming", tags=["streaming"])


def run():
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8888, log_level="info", workers=1)


if __name__ == "__main__":
    run()
