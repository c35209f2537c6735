QUALITY_PRIORITY = ["480p", "720p", "1080p"]

DEFAULT_RECOMMENDED_QUALITY = "720p"

CONNECTION_QUALITY_LIMITS = {
    "slow": ["480p"],
    "medium": ["480p", "720p"],
    "fast": ["480p", "720p", "1080p"],
}

DEFAULT_CONNECTION = "slow"

# quality -> (bandwidth in bits per second, resolution)
QUALITY_PROFILES = {
    "480p": (1_000_000, "854x480"),
    "720p": (2_500_000, "1280x720"),
    "1080p": (5_000_000, "1920x1080"),
}

RENDITION_PATH_TEMPLATE = "processed/{media_id}/{quality}.mp4"
RENDITION_MIME_TYPE = "video/mp4"

MANIFEST_PATH_TEMPLATE = "manifests/{media_id}/playlist.m3u8"
SUB_PLAYLIST_TEMPLATE = "quality_{quality}.m3u8"
HLS_MEDIA_TYPE = "application/vnd.apple.mpegurl"

PREMIUM_ENTITY_TYPES = ["premium_content", "premium_exercise", "premium_workout"]

USAGE_COUNTER_PREFIX = "streamgate:usage:"
