from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    log_level: str = "INFO"  # The logging level to use.
    streaming_secret: str = "default-secret"  # The HMAC secret used to sign streaming tokens.
    token_ttl: int = 2 * 60 * 60  # Lifetime of issued streaming tokens in seconds.
    manifest_ttl: int = 2 * 60 * 60  # Advertised lifetime of generated manifests in seconds.
    media_root: str = "storage"  # Root directory of the media file store.
    media_catalog_path: Optional[str] = None  # JSON file with the media object records to serve.
    public_base_url: Optional[str] = None  # Base URL used when building streaming URLs. Defaults to the request URL.
    cdn_base_url: Optional[str] = None  # When set, stored file URLs are rewritten to this CDN origin.
    auth_service_url: Optional[str] = None  # Base URL of the authentication service.
    content_service_url: Optional[str] = None  # Base URL of the content service (exercise/workout access).
    auth_timeout: float = Field(10.0, description="Timeout for resolving the requester with the auth service.")
    entitlement_timeout: float = Field(5.0, description="Upper bound for the whole entitlement check in seconds.")
    redis_url: Optional[str] = None  # Redis URL for shared play counters. In-process counters when unset.
    stream_chunk_size: int = 64 * 1024  # Size of the chunks read from disk while streaming.
    enable_streaming_progress: bool = False  # Whether to enable streaming progress tracking.
    disable_docs: bool = False  # Whether to disable the API documentation (Swagger UI).

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
