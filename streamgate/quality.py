import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from streamgate.const import (
    CONNECTION_QUALITY_LIMITS,
    DEFAULT_CONNECTION,
    DEFAULT_RECOMMENDED_QUALITY,
    QUALITY_PRIORITY,
    RENDITION_PATH_TEMPLATE,
)
from streamgate.storage import FileStore

logger = logging.getLogger(__name__)


def rendition_path(media_id: int, quality: str) -> str:
    return RENDITION_PATH_TEMPLATE.format(media_id=media_id, quality=quality)


def permitted_qualities(connection_hint: Optional[str]) -> list[str]:
    """Qualities a client on ``connection_hint`` may receive. Unknown hints get the slow set."""
    return CONNECTION_QUALITY_LIMITS.get(connection_hint or "", CONNECTION_QUALITY_LIMITS[DEFAULT_CONNECTION])


@dataclass
class QualitySelection:
    available: list[str] = field(default_factory=list)
    recommended: str = DEFAULT_RECOMMENDED_QUALITY

    @property
    def degraded(self) -> bool:
        return not self.available


class QualityResolver:
    def __init__(self, store: FileStore):
        self.store = store

    async def existing_renditions(self, media_id: int) -> list[str]:
        """Probe storage for every known quality, in priority order."""
        found = await asyncio.gather(
            *(self.store.exists(rendition_path(media_id, quality)) for quality in QUALITY_PRIORITY)
        )
        return [quality for quality, exists in zip(QUALITY_PRIORITY, found) if exists]

    async def resolve(self, media_id: int, connection_hint: Optional[str]) -> QualitySelection:
        existing = await self.existing_renditions(media_id)
        permitted = permitted_qualities(connection_hint)
        available = [quality for quality in existing if quality in permitted]

        if not available:
            logger.warning(f"No rendition of media {media_id} fits connection {connection_hint!r}")
            return QualitySelection([], DEFAULT_RECOMMENDED_QUALITY)

        return QualitySelection(available, available[-1])
