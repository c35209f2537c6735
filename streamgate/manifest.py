"""
HLS master playlist generator.

Produces an M3U8 master playlist with one ``#EXT-X-STREAM-INF`` entry per
available rendition. Each entry points at the rendition's own media playlist,
``quality_<label>.m3u8``, which sits next to the master playlist and is written
by the encoder.
"""

from __future__ import annotations

from typing import Iterable

from streamgate.const import QUALITY_PROFILES, SUB_PLAYLIST_TEMPLATE
from streamgate.schemas import MediaObject


def sub_playlist_name(quality: str) -> str:
    return SUB_PLAYLIST_TEMPLATE.format(quality=quality)


class ManifestBuilder:
    def build(self, media: MediaObject, available_qualities: Iterable[str]) -> str:
        """Build the master playlist for *media*.

        Args:
            media: The media object the playlist describes.
            available_qualities: Quality labels in priority order. Labels
                without a bandwidth/resolution profile are skipped.

        Returns:
            Complete M3U8 playlist string.
        """
        lines: list[str] = ["#EXTM3U", "#EXT-X-VERSION:3", ""]

        for quality in available_qualities:
            profile = QUALITY_PROFILES.get(quality)
            if profile is None:
                continue
            bandwidth, resolution = profile
            lines.append(f"#EXT-X-STREAM-INF:BANDWIDTH={bandwidth},RESOLUTION={resolution}")
            lines.append(sub_playlist_name(quality))

        lines.append("")  # trailing newline

        return "\n".join(lines)
