from typing import Optional, Union
from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path

# Define the root directory of the presocial service
SERVICE_ROOT_DIR = Path(__file__).parent.parent.resolve()
# Path to the repository root (two levels up from this settings.py)
PROJECT_ROOT_DIR = SERVICE_ROOT_DIR.parent

class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "PreSocial API"
    APP_VERSION: str = "0.1.0"
    APP_DESCRIPTION: str = "Community insights for Presearch - powered by Lemmy"
    DEBUG: bool = False
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 3002

    # Security settings
    CORS_ORIGINS: Union[str, list[str]] = (
        "https://presearch.com,https://www.presearch.com,https://presuite.eu,"
        "https://predrive.eu,https://premail.site,https://preoffice.site,"
        "http://localhost:3000,http://localhost:5173"
    )
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: Union[str, list[str]] = "GET,POST,OPTIONS"
    CORS_ALLOW_HEADERS: Union[str, list[str]] = "Content-Type,Authorization"
    CORS_EXPOSE_HEADERS: Union[str, list[str]] = "X-RateLimit-Limit,X-RateLimit-Remaining,X-RateLimit-Reset"
    CORS_MAX_AGE: int = 86400

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_MAX_REQUESTS: int = 100

    # Cache settings. Without REDIS_URL the in-process backend is used.
    REDIS_URL: Optional[str] = None
    REDIS_CONNECT_TIMEOUT_SECONDS: float = 3.0
    CACHE_NAMESPACE: str = "presocial"
    CACHE_SWEEP_THRESHOLD: int = 1000
    CACHE_TTL_SEARCH: int = 300
    CACHE_TTL_POST: int = 900
    CACHE_TTL_COMMUNITIES: int = 3600
    CACHE_TTL_TRENDING: int = 1800

    # Vote/bookmark storage
    STORAGE_DIR: str = str(PROJECT_ROOT_DIR / "data")
    STORAGE_FLUSH_INTERVAL_SECONDS: float = 5.0

    # Lemmy upstream
    LEMMY_INSTANCE_URL: str = "https://lemmy.world"
    LEMMY_BOT_USERNAME: Optional[str] = None
    LEMMY_BOT_PASSWORD: Optional[str] = None
    LEMMY_TIMEOUT_SECONDS: float = 10.0

    # Authentication
    JWT_SECRET: Optional[str] = None
    JWT_ISSUER: str = "presuite"
    JWT_ALGORITHM: str = "HS256"
    AUTH_API_URL: str = "https://presuite.eu/api/auth"
    AUTH_TIMEOUT_SECONDS: float = 10.0

    # Logging configuration path (can be overridden by env var)
    LOGGING_CONFIG_PATH: str = str(SERVICE_ROOT_DIR / "config" / "logging_config.yaml")

    def model_post_init(self, __context) -> None:
        """Parse comma-separated strings into lists after model initialization."""
        if isinstance(self.CORS_ORIGINS, str):
            self.CORS_ORIGINS = [origin.strip() for origin in self.CORS_ORIGINS.split(',') if origin.strip()]

        if isinstance(self.CORS_ALLOW_METHODS, str):
            self.CORS_ALLOW_METHODS = [method.strip() for method in self.CORS_ALLOW_METHODS.split(',') if method.strip()]

        if isinstance(self.CORS_ALLOW_HEADERS, str):
            if self.CORS_ALLOW_HEADERS == "*":
                self.CORS_ALLOW_HEADERS = ["*"]
            else:
                self.CORS_ALLOW_HEADERS = [header.strip() for header in self.CORS_ALLOW_HEADERS.split(',') if header.strip()]

        if isinstance(self.CORS_EXPOSE_HEADERS, str):
            self.CORS_EXPOSE_HEADERS = [header.strip() for header in self.CORS_EXPOSE_HEADERS.split(',') if header.strip()]

    model_config = SettingsConfigDict(
        env_file= str(PROJECT_ROOT_DIR / ".env"),  # Load variables from project root .env
        env_file_encoding='utf-8',
        extra='ignore'
    )

    @property
    def local_auth_enabled(self) -> bool:
        return bool(self.JWT_SECRET)

# Instantiate settings
settings = Settings()

if __name__ == "__main__":
    print(f"Running {settings.APP_NAME} v{settings.APP_VERSION}")
    print(f"Lemmy instance: {settings.LEMMY_INSTANCE_URL}")
    print(f"Redis URL: {settings.REDIS_URL or 'not configured (in-memory cache)'}")
    print(f"Storage dir: {settings.STORAGE_DIR}")
    print(f"Logging config: {settings.LOGGING_CONFIG_PATH}")
