"""
Application configuration using pydantic-settings.
"""
import logging
import secrets
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Insecure default that should never be used in production
_INSECURE_DEFAULT_SECRET = "your-super-secret-key-change-in-production"
DEFAULT_SQLITE_URL = "sqlite:////data/catalyst.db"

# Define the project root directory
PROJECT_ROOT = Path(__file__).parent.parent.parent.resolve()

# Sync scheduling constants
SYNC_FAILURE_PAUSE_THRESHOLD = 5
WEBHOOK_FAILURE_DEACTIVATE_THRESHOLD = 10
DEFAULT_SYNC_INTERVAL_MINUTES = 15
DEFAULT_SYNC_WINDOW_DAYS = 7
TOKEN_REFRESH_MARGIN_MINUTES = 5
OAUTH_STATE_TTL_SECONDS = 600

# Providers whose first sync starts right after the OAuth callback.
# Others (e.g. GitHub) need a repository selection first.
AUTO_SYNC_PROVIDERS = [
    "stripe",
    "slack",
    "notion",
    "google_calendar",
    "gmail",
    "linear",
    "todoist",
]


class OAuthProviderConfig(BaseModel):
    """Resolved OAuth endpoints and credentials for one provider."""
    client_id: str
    client_secret: str
    authorization_url: str
    token_url: str
    redirect_uri: str
    scopes: List[str] = []


# Static OAuth endpoints (provider -> (authorization_url, token_url, scopes))
OAUTH_ENDPOINTS: Dict[str, tuple] = {
    "github": (
        "https://github.com/login/oauth/authorize",
        "https://github.com/login/oauth/access_token",
        ["repo", "read:user", "user:email", "admin:repo_hook"],
    ),
    "slack": (
        "https://slack.com/oauth/v2/authorize",
        "https://slack.com/api/oauth.v2.access",
        ["channels:history", "channels:read", "chat:write", "users:read", "team:read"],
    ),
    "notion": (
        "https://api.notion.com/v1/oauth/authorize",
        "https://api.notion.com/v1/oauth/token",
        [],
    ),
    "linear": (
        "https://linear.app/oauth/authorize",
        "https://api.linear.app/oauth/token",
        ["read", "write"],
    ),
    "todoist": (
        "https://todoist.com/oauth/authorize",
        "https://todoist.com/oauth/access_token",
        ["data:read_write"],
    ),
    "gmail": (
        "https://accounts.google.com/o/oauth2/v2/auth",
        "https://oauth2.googleapis.com/token",
        [
            "https://www.googleapis.com/auth/gmail.readonly",
            "https://www.googleapis.com/auth/userinfo.email",
        ],
    ),
    "google_calendar": (
        "https://accounts.google.com/o/oauth2/v2/auth",
        "https://oauth2.googleapis.com/token",
        [
            "https://www.googleapis.com/auth/calendar.readonly",
            "https://www.googleapis.com/auth/userinfo.email",
        ],
    ),
    "google_sheets": (
        "https://accounts.google.com/o/oauth2/v2/auth",
        "https://oauth2.googleapis.com/token",
        [
            "https://www.googleapis.com/auth/spreadsheets.readonly",
            "https://www.googleapis.com/auth/userinfo.email",
        ],
    ),
    "raindrop": (
        "https://raindrop.io/oauth/authorize",
        "https://raindrop.io/oauth/access_token",
        [],
    ),
    "discord": (
        "https://discord.com/api/oauth2/authorize",
        "https://discord.com/api/oauth2/token",
        ["identify", "guilds", "messages.read"],
    ),
    "zoom": (
        "https://zoom.us/oauth/authorize",
        "https://zoom.us/oauth/token",
        ["recording:read", "user:read"],
    ),
    "pocket": (
        "https://getpocket.com/auth/authorize",
        "https://getpocket.com/v3/oauth/authorize",
        [],
    ),
    "readwise": (
        "https://readwise.io/oauth/authorize",
        "https://readwise.io/oauth/token",
        [],
    ),
    "stripe": (
        "https://connect.stripe.com/oauth/authorize",
        "https://connect.stripe.com/oauth/token",
        ["read_only"],
    ),
}


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = "Catalyst Launch Integrations"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"
    domain_name: str = ""
    domain_scheme: str = "http"
    app_port: int = 8000
    # Public base URL used to build OAuth redirect URIs and webhook delivery URLs
    app_url: Optional[str] = None

    # API
    api_v1_prefix: str = "/api/v1"
    enable_cors: bool = False
    cors_origins: Optional[List[str]] = None

    # Database Configuration
    database_url: str = DEFAULT_SQLITE_URL
    postgres_url: Optional[str] = None
    postgres_user: Optional[str] = None
    postgres_password: Optional[str] = None
    postgres_db: Optional[str] = None
    postgres_host: Optional[str] = None
    postgres_port: Optional[int] = None

    # Security
    secret_key: str = ""  # Must be set via environment variable
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    cron_secret: Optional[str] = None

    # Redis Configuration (OAuth state cache and Celery)
    redis_url: Optional[str] = None

    # Celery Configuration
    celery_broker_url: Optional[str] = None
    celery_result_backend: Optional[str] = None
    celery_task_serializer: str = "json"
    celery_result_serializer: str = "json"
    celery_accept_content: List[str] = ["json"]
    celery_timezone: str = "UTC"
    celery_enable_utc: bool = True

    # Sync scheduling
    sync_scan_interval_minutes: int = 5
    sync_due_batch_limit: int = 20
    sync_stale_after_minutes: int = 30
    integration_http_timeout: float = 30.0

    # OAuth client credentials
    github_client_id: Optional[str] = None
    github_client_secret: Optional[str] = None
    slack_client_id: Optional[str] = None
    slack_client_secret: Optional[str] = None
    notion_client_id: Optional[str] = None
    notion_client_secret: Optional[str] = None
    linear_client_id: Optional[str] = None
    linear_client_secret: Optional[str] = None
    todoist_client_id: Optional[str] = None
    todoist_client_secret: Optional[str] = None
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    raindrop_client_id: Optional[str] = None
    raindrop_client_secret: Optional[str] = None
    discord_client_id: Optional[str] = None
    discord_client_secret: Optional[str] = None
    zoom_client_id: Optional[str] = None
    zoom_client_secret: Optional[str] = None
    readwise_client_id: Optional[str] = None
    readwise_client_secret: Optional[str] = None
    stripe_client_id: Optional[str] = None
    stripe_secret_key: Optional[str] = None
    pocket_consumer_key: Optional[str] = None

    # API-key providers (instance-wide fallback keys)
    granola_api_key: Optional[str] = None
    granola_api_url: str = "https://api.granola.so/v1"

    # Webhook secrets
    github_webhook_secret: Optional[str] = None
    linear_webhook_secret: Optional[str] = None
    slack_signing_secret: Optional[str] = None
    zoom_webhook_secret: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    discord_public_key: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_dir: str = "/data/logs"
    log_sql_requests: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def database_type(self) -> str:
        """Detect database type from configuration."""
        if self.postgres_url or (self.postgres_host and self.postgres_user):
            return "postgresql"
        if self.database_url.startswith(("postgresql", "postgres")):
            return "postgresql"
        return "sqlite"

    @property
    def effective_database_url(self) -> str:
        """Get the effective database URL based on configuration hierarchy."""
        if self.postgres_url:
            return self.postgres_url

        if self.postgres_host and self.postgres_user and self.postgres_db:
            password = self.postgres_password or ""
            port = self.postgres_port or 5432
            return f"postgresql://{self.postgres_user}:{password}@{self.postgres_host}:{port}/{self.postgres_db}"

        return self.database_url

    @field_validator('secret_key')
    @classmethod
    def validate_secret_key(cls, v: str, info: ValidationInfo) -> str:
        """Validate SECRET_KEY is set and secure."""
        if not v:
            env = info.data.get('environment', 'development')
            if env == 'production':
                raise ValueError(
                    "SECRET_KEY must be set in production! "
                    "Generate one with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
                )
            logger.warning(
                "SECRET_KEY not set! Using auto-generated key for development. "
                "This key will change on restart and stored integration tokens will become unreadable."
            )
            return secrets.token_urlsafe(32)

        if v == _INSECURE_DEFAULT_SECRET:
            logger.warning("Using insecure default SECRET_KEY!")
        elif len(v) < 32:
            logger.warning(
                f"SECRET_KEY is only {len(v)} characters long. "
                "Recommend at least 32 characters for security."
            )

        return v

    @field_validator('cors_origins', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from string or list."""
        if v is None:
            return []
        if isinstance(v, str):
            if not v.strip():
                return []
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        if isinstance(v, list):
            return v
        return []

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v: str, info: ValidationInfo) -> str:
        """Validate primary database URL."""
        if not v or not v.strip():
            logger.info("DATABASE_URL not provided; defaulting to SQLite at %s", DEFAULT_SQLITE_URL)
            return DEFAULT_SQLITE_URL

        url = v.strip()
        if url.startswith(("sqlite", "postgresql", "postgres")):
            return url

        logger.warning(
            "DATABASE_URL uses unsupported or untested dialect '%s'. Proceed with caution.",
            url.split("://", 1)[0]
        )
        return url

    @field_validator('postgres_url')
    @classmethod
    def validate_postgres_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate PostgreSQL override URL."""
        if not v or not v.strip():
            return None
        url = v.strip()
        if not url.startswith(("postgresql", "postgres")):
            raise ValueError("POSTGRES_URL must be a PostgreSQL URL (postgresql:// or postgres://)")
        return url

    @field_validator('domain_scheme')
    @classmethod
    def validate_domain_scheme(cls, v: str) -> str:
        """Validate DOMAIN_SCHEME is either http or https."""
        v = v.lower().strip()
        if v not in ("http", "https"):
            raise ValueError(f"DOMAIN_SCHEME must be either 'http' or 'https'. Got: {v}")
        return v

    @field_validator('domain_name')
    @classmethod
    def validate_domain_name(cls, v: str) -> str:
        """Validate DOMAIN_NAME does not contain scheme or trailing slash."""
        if not v:
            return v
        v = v.strip()
        if v.startswith("http://") or v.startswith("https://"):
            raise ValueError(
                "DOMAIN_NAME must not contain a scheme (http:// or https://). "
                f"Set the scheme separately using DOMAIN_SCHEME. Got: {v}"
            )
        return v.rstrip("/")

    @field_validator('app_url')
    @classmethod
    def validate_app_url(cls, v: Optional[str]) -> Optional[str]:
        """Strip trailing slashes from APP_URL."""
        if not v or not v.strip():
            return None
        url = v.strip().rstrip("/")
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"APP_URL must start with http:// or https://. Got: {url}")
        return url

    @field_validator(
        'sync_scan_interval_minutes',
        'sync_due_batch_limit',
        'sync_stale_after_minutes',
    )
    @classmethod
    def validate_positive_ints(cls, v: int) -> int:
        """Scheduling knobs must be positive."""
        if v <= 0:
            raise ValueError("Sync scheduling settings must be positive")
        return v

    @field_validator('integration_http_timeout')
    @classmethod
    def validate_http_timeout(cls, v: float) -> float:
        """Validate outbound HTTP timeout is reasonable."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        if v > 300:
            raise ValueError("Timeout cannot exceed 300 seconds")
        return v

    @field_validator('celery_broker_url', 'celery_result_backend')
    @classmethod
    def validate_celery_urls(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        """Auto-configure Celery from redis_url if not explicitly set."""
        if v:
            return v
        redis_url = info.data.get('redis_url')
        if redis_url:
            logger.info(f"{info.field_name.upper()} not set. Defaulting to REDIS_URL")
            return redis_url
        return v

    @model_validator(mode='after')
    def construct_app_url(self) -> 'Settings':
        """Derive app_url from domain components if not explicitly set."""
        if not self.app_url:
            if self.domain_name:
                self.app_url = f"{self.domain_scheme}://{self.domain_name}"
            else:
                self.app_url = f"{self.domain_scheme}://localhost:{self.app_port}"
        return self

    @model_validator(mode='after')
    def validate_production_settings(self) -> 'Settings':
        """Comprehensive production validation."""
        if self.environment != "production":
            return self

        errors = []
        warnings = []

        if self.debug:
            errors.append("DEBUG must be False in production.")

        if self.app_url and "localhost" in self.app_url:
            errors.append(
                "APP_URL points to localhost in production. OAuth redirect URIs "
                "and webhook delivery URLs would be unreachable."
            )

        if not self.cron_secret:
            warnings.append("CRON_SECRET not configured. The cron sync endpoint will reject all calls.")

        if not self.celery_broker_url:
            warnings.append(
                "CELERY_BROKER_URL not configured. Background and scheduled syncs require Celery with Redis."
            )

        if self.database_url.startswith("sqlite") and not self.postgres_url:
            warnings.append(
                "Using SQLite in production. Concurrent sync workers rely on conditional "
                "updates; PostgreSQL is recommended."
            )

        for warning in warnings:
            logger.warning(f"Production configuration warning: {warning}")

        if errors:
            error_message = "Production configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_message)

        return self

    def oauth_redirect_uri(self, provider: str) -> str:
        """Callback URL registered with the provider's OAuth app."""
        slug = provider.replace("_", "-")
        return f"{self.app_url}{self.api_v1_prefix}/integrations/{slug}/callback"

    def webhook_delivery_url(self, provider: str) -> str:
        """Inbound webhook URL handed to providers on registration."""
        slug = provider.replace("_", "-")
        return f"{self.app_url}{self.api_v1_prefix}/integrations/{slug}/webhook"

    def _client_credentials(self, provider: str) -> tuple[Optional[str], Optional[str]]:
        if provider in ("gmail", "google_calendar", "google_sheets"):
            return self.google_client_id, self.google_client_secret
        if provider == "stripe":
            return self.stripe_client_id, self.stripe_secret_key
        if provider == "pocket":
            return self.pocket_consumer_key, self.pocket_consumer_key
        return (
            getattr(self, f"{provider}_client_id", None),
            getattr(self, f"{provider}_client_secret", None),
        )

    def get_oauth_config(self, provider: str) -> Optional[OAuthProviderConfig]:
        """Return the OAuth config for a provider, or None when it is not configured."""
        endpoints = OAUTH_ENDPOINTS.get(provider)
        if not endpoints:
            return None
        client_id, client_secret = self._client_credentials(provider)
        if not client_id or not client_secret:
            return None
        authorization_url, token_url, scopes = endpoints
        return OAuthProviderConfig(
            client_id=client_id,
            client_secret=client_secret,
            authorization_url=authorization_url,
            token_url=token_url,
            redirect_uri=self.oauth_redirect_uri(provider),
            scopes=list(scopes),
        )

    def get_webhook_secret(self, provider: str) -> Optional[str]:
        """Return the shared webhook secret (or verification key) for a provider."""
        secrets_map = {
            "github": self.github_webhook_secret,
            "linear": self.linear_webhook_secret,
            "slack": self.slack_signing_secret,
            "zoom": self.zoom_webhook_secret,
            "stripe": self.stripe_webhook_secret,
            "discord": self.discord_public_key,
            # Todoist signs deliveries with the app client secret
            "todoist": self.todoist_client_secret,
        }
        return secrets_map.get(provider)

    def is_provider_configured(self, provider: str) -> bool:
        """A provider is configured when OAuth credentials or an API key are present."""
        if provider in ("granola", "browser_extension"):
            # API-key providers: users bring their own key
            return True
        return self.get_oauth_config(provider) is not None


# Create settings instance
settings = Settings()
