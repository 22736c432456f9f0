# src/gadgetserver/core/config.py
from dotenv import load_dotenv
load_dotenv(".env")
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, computed_field
from typing import Optional, List, Literal

class Settings(BaseSettings):
    # model_config 会自动加载 .env 文件
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    APP_ENV: str = "production"
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8080

    # --- Features ---
    FEATURES_PATH: List[str] = ["features"]
    # Root for bundled `res://` resources referenced by feature descriptors
    RESOURCES_PATH: str = "resources"
    # Colon separated feature names that are always loaded, e.g. "core:rpc"
    FORCED_JS_LIBS: str = ""
    JS_PREFIX: str = "/gadgets/js/"

    # --- Content cache ---
    CACHE_BACKEND: Literal["file", "redis", "memory"] = "file"
    CACHE_DIR: str = "/tmp/gadgetserver/cache"
    CACHE_LOCK_TTL_SECONDS: float = 5.0

    # Redis
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: Optional[str] = None
    REDIS_DB: int = 0

    @computed_field
    @property
    def REDIS_URL(self) -> str:
        password = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{password}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # --- Security token ---
    # Make sure these match the keys used by the container site.
    TOKEN_CIPHER_KEY: Optional[str] = None
    TOKEN_HMAC_KEY: Optional[str] = None
    TOKEN_MAX_AGE_SECONDS: int = 60 * 60
    TOKEN_CLOCK_SKEW_SECONDS: int = 180
    # Development only: colon delimited, unencrypted tokens. Ignored once cipher keys are set.
    ALLOW_PLAINTEXT_TOKEN: bool = False
    ALLOW_ANONYMOUS_TOKEN: bool = True
    RENDER_TOKEN_REQUIRED: bool = False
    # Shared with the container site; POST /gadgets/token is refused while unset
    TOKEN_ISSUER_SECRET: Optional[str] = None

    # --- OAuth / signed fetch ---
    OAUTH_PRIVATE_KEY_FILE: Optional[str] = None
    OAUTH_PRIVATE_KEY_PASSPHRASE: Optional[str] = None
    OAUTH_PUBLIC_CERT_FILE: Optional[str] = None
    OAUTH_KEY_NAME: Optional[str] = None
    OAUTH_CONSUMERS_FILE: Optional[str] = None
    OAUTH_PARAMS_LOCATION: Literal["query", "header"] = "query"

    # --- Outbound fetching ---
    FETCH_TIMEOUT_SECONDS: float = Field(20.0, gt=0, description="Per-request budget, not per batch.")
    FETCH_MAX_CONCURRENCY: int = Field(8, ge=1)
    DEFAULT_REFRESH_INTERVAL: int = 3600

    @property
    def forced_js_libs(self) -> List[str]:
        return [name for name in self.FORCED_JS_LIBS.split(":") if name.strip()]

settings = Settings()
