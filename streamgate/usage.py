import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol, Set, Tuple

from streamgate.const import USAGE_COUNTER_PREFIX
from streamgate.schemas import MediaObject, MediaType
from streamgate.utils.redis_utils import get_hash_field, increment_hash_field, is_redis_configured

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientInfo:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def counter_name(media: MediaObject) -> str:
    return "view_count" if media.file_type == MediaType.VIDEO else "play_count"


class PlayCounter(Protocol):
    async def increment(self, counter: str, media_id: int) -> int: ...

    async def get(self, counter: str, media_id: int) -> int: ...


class MemoryPlayCounter:
    """Per-process counters. Increments never await, so no update is lost within one event loop."""

    def __init__(self):
        self._counts: Dict[Tuple[str, int], int] = defaultdict(int)

    async def increment(self, counter: str, media_id: int) -> int:
        self._counts[(counter, media_id)] += 1
        return self._counts[(counter, media_id)]

    async def get(self, counter: str, media_id: int) -> int:
        return self._counts.get((counter, media_id), 0)


class RedisPlayCounter:
    """Counters shared by all workers, incremented with HINCRBY."""

    async def increment(self, counter: str, media_id: int) -> int:
        value = await increment_hash_field(f"{USAGE_COUNTER_PREFIX}{counter}", str(media_id))
        if value is None:
            raise RuntimeError("Redis is not available")
        return value

    async def get(self, counter: str, media_id: int) -> int:
        value = await get_hash_field(f"{USAGE_COUNTER_PREFIX}{counter}", str(media_id))
        return value or 0


def create_play_counter() -> PlayCounter:
    if is_redis_configured():
        return RedisPlayCounter()
    return MemoryPlayCounter()


class UsageRecorder:
    """Best-effort play tracking. Never raises to the caller."""

    def __init__(self, counter: PlayCounter):
        self.counter = counter
        self._pending: Set[asyncio.Task] = set()

    async def record_play(self, media: MediaObject, viewer_id: Optional[int], client_info: ClientInfo) -> None:
        try:
            usage = {
                "media_file_id": media.media_id,
                "user_id": viewer_id,
                "event_type": "play",
                "timestamp": datetime.now(tz=timezone.utc).isoformat(),
                "ip_address": client_info.ip_address,
                "user_agent": client_info.user_agent,
            }
            logger.info(f"Content usage tracked: {usage}")
            await self.counter.increment(counter_name(media), media.media_id)
        except Exception as e:
            logger.error(f"Failed to track content usage for media {media.media_id}: {e}")

    def dispatch(self, media: MediaObject, viewer_id: Optional[int], client_info: ClientInfo) -> asyncio.Task:
        """Schedule ``record_play`` without waiting for it."""
        task = asyncio.get_running_loop().create_task(self.record_play(media, viewer_id, client_info))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every dispatched record to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
