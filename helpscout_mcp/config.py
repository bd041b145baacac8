from typing import Any, Dict, Optional

from pydantic import AliasChoices, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


DEFAULT_BASE_URL = "https://api.helpscout.net/v2/"
DEFAULT_DOCS_BASE_URL = "https://docsapi.helpscout.net/v1/"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=[".env", "../.env"], env_file_encoding="utf-8", extra="ignore"
    )

    # OAuth2 client credentials (HELPSCOUT_CLIENT_* kept as aliases)
    HELPSCOUT_APP_ID: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("HELPSCOUT_APP_ID", "HELPSCOUT_CLIENT_ID"),
    )
    HELPSCOUT_APP_SECRET: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("HELPSCOUT_APP_SECRET", "HELPSCOUT_CLIENT_SECRET"),
    )
    # Deprecated: only inspected to produce a migration error
    HELPSCOUT_API_KEY: Optional[SecretStr] = None

    HELPSCOUT_BASE_URL: str = DEFAULT_BASE_URL
    HELPSCOUT_DEFAULT_INBOX_ID: Optional[str] = None

    # Docs API
    HELPSCOUT_DOCS_API_KEY: Optional[SecretStr] = None
    HELPSCOUT_DOCS_BASE_URL: str = DEFAULT_DOCS_BASE_URL
    HELPSCOUT_DEFAULT_DOCS_COLLECTION_ID: Optional[str] = None
    HELPSCOUT_DEFAULT_DOCS_SITE_ID: Optional[str] = None
    HELPSCOUT_DISABLE_DOCS: bool = False

    # Safety gates
    HELPSCOUT_ALLOW_DOCS_DELETE: bool = False
    HELPSCOUT_ALLOW_SEND_REPLY: bool = False
    REDACT_MESSAGE_CONTENT: bool = False

    # Response shaping
    HELPSCOUT_REPLY_SPACING: str = "relaxed"  # "relaxed" or "compact"
    HELPSCOUT_VERBOSE_RESPONSES: bool = False

    # Caching
    CACHE_TTL_SECONDS: int = 300
    MAX_CACHE_SIZE: int = 10000

    # HTTP
    HTTP_SOCKET_TIMEOUT: int = 30000  # milliseconds
    MAX_RETRIES: int = 3
    RETRY_BASE_DELAY: float = 1.0
    RETRY_MAX_DELAY: float = 10.0

    # Logging Configuration
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    @model_validator(mode="after")
    def normalize_urls(self):
        """Ensure base URLs end with a slash so relative paths join cleanly."""
        if not self.HELPSCOUT_BASE_URL.endswith("/"):
            self.HELPSCOUT_BASE_URL += "/"
        if not self.HELPSCOUT_DOCS_BASE_URL.endswith("/"):
            self.HELPSCOUT_DOCS_BASE_URL += "/"
        self.HELPSCOUT_REPLY_SPACING = self.HELPSCOUT_REPLY_SPACING.strip().lower()
        return self

    @property
    def allow_pii(self) -> bool:
        return not self.REDACT_MESSAGE_CONTENT

    @property
    def compact_replies(self) -> bool:
        return self.HELPSCOUT_REPLY_SPACING == "compact"

    @property
    def docs_enabled(self) -> bool:
        return not self.HELPSCOUT_DISABLE_DOCS

    @property
    def http_timeout_seconds(self) -> float:
        return self.HTTP_SOCKET_TIMEOUT / 1000.0

    def is_verbose(self, arguments: Optional[Dict[str, Any]] = None) -> bool:
        """Per-call ``verbose`` wins over the server-wide default."""
        if arguments and isinstance(arguments.get("verbose"), bool):
            return arguments["verbose"]
        return self.HELPSCOUT_VERBOSE_RESPONSES

    def summary(self) -> Dict[str, Any]:
        """Non-secret view of the settings for startup logging."""
        return {
            "base_url": self.HELPSCOUT_BASE_URL,
            "docs_base_url": self.HELPSCOUT_DOCS_BASE_URL,
            "docs_enabled": self.docs_enabled,
            "docs_api_key_set": self.HELPSCOUT_DOCS_API_KEY is not None,
            "default_inbox_id": self.HELPSCOUT_DEFAULT_INBOX_ID,
            "allow_send_reply": self.HELPSCOUT_ALLOW_SEND_REPLY,
            "allow_docs_delete": self.HELPSCOUT_ALLOW_DOCS_DELETE,
            "redact_message_content": self.REDACT_MESSAGE_CONTENT,
            "reply_spacing": self.HELPSCOUT_REPLY_SPACING,
            "cache_ttl_seconds": self.CACHE_TTL_SECONDS,
        }


def validate_config(settings: Settings) -> None:
    """
    Fail fast on configurations that cannot authenticate or are unsafe.

    Raises:
        ConfigurationError: with a human-readable remediation message
    """
    api_key = settings.HELPSCOUT_API_KEY.get_secret_value() if settings.HELPSCOUT_API_KEY else ""
    if api_key.startswith("Bearer "):
        raise ConfigurationError(
            "Personal Access Tokens are no longer supported by this server. "
            "Help Scout requires OAuth2 client credentials. To migrate:\n"
            "  1. Go to Help Scout > Your Profile > My Apps and create an app\n"
            "  2. Set HELPSCOUT_APP_ID to the app's App ID\n"
            "  3. Set HELPSCOUT_APP_SECRET to the app's App Secret\n"
            "  4. Remove HELPSCOUT_API_KEY"
        )

    secret = settings.HELPSCOUT_APP_SECRET.get_secret_value() if settings.HELPSCOUT_APP_SECRET else ""
    if not settings.HELPSCOUT_APP_ID or not secret:
        raise ConfigurationError(
            "OAuth2 authentication required. Help Scout API needs client credentials:\n"
            "  HELPSCOUT_APP_ID: your App ID from Help Scout > My Apps\n"
            "  HELPSCOUT_APP_SECRET: your App Secret from Help Scout > My Apps\n"
            "Optional: HELPSCOUT_DEFAULT_INBOX_ID to scope searches to one inbox"
        )

    for name in ("HELPSCOUT_BASE_URL", "HELPSCOUT_DOCS_BASE_URL"):
        url = getattr(settings, name)
        if not url.lower().startswith("https://"):
            raise ConfigurationError(
                f"Security Error: {name} must use HTTPS to protect credentials "
                f"in transit (got {url!r})."
            )

    if settings.HELPSCOUT_REPLY_SPACING not in ("relaxed", "compact"):
        raise ConfigurationError(
            "HELPSCOUT_REPLY_SPACING must be 'relaxed' or 'compact' "
            f"(got {settings.HELPSCOUT_REPLY_SPACING!r})."
        )
