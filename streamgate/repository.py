import json
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol

from pydantic import ValidationError

from streamgate.configs import settings
from streamgate.schemas import MediaObject

logger = logging.getLogger(__name__)


class MediaRepository(Protocol):
    async def get(self, media_id: int) -> Optional[MediaObject]: ...


class InMemoryMediaRepository:
    """Media records held in memory, optionally loaded from a JSON catalog."""

    def __init__(self, media: Iterable[MediaObject] = ()):
        self._media: Dict[int, MediaObject] = {item.media_id: item for item in media}

    def add(self, media: MediaObject) -> None:
        self._media[media.media_id] = media

    async def get(self, media_id: int) -> Optional[MediaObject]:
        return self._media.get(media_id)

    @classmethod
    def load_from_file(cls, path: Path) -> "InMemoryMediaRepository":
        """
        Load media records from a JSON file holding a list of objects, or an object
        with a ``media`` list.
        """
        raw = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(raw, dict):
            raw = raw.get("media")
        if not isinstance(raw, list):
            raise ValueError("media catalog must contain a list of media objects")

        try:
            media = [MediaObject.model_validate(item) for item in raw]
        except ValidationError as e:
            raise ValueError(f"invalid media catalog {path}: {e}") from e

        logger.info(f"Loaded {len(media)} media objects from {path}")
        return cls(media)

    @classmethod
    def from_settings(cls) -> "InMemoryMediaRepository":
        if not settings.media_catalog_path:
            logger.warning("No media catalog configured, every lookup will return 404")
            return cls()
        return cls.load_from_file(Path(settings.media_catalog_path))
