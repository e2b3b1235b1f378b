from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    redis_url: str = "redis://localhost:6379/0"
    google_client_id: str = ""
    google_client_secret: str = ""
    google_auth_url: str = "https://accounts.google.com/o/oauth2/v2/auth"
    google_token_url: str = "https://oauth2.googleapis.com/token"
    google_sheets_api_base: str = "https://sheets.googleapis.com/v4/spreadsheets"
    google_sheets_export_base: str = "https://docs.google.com/spreadsheets/d"
    oauth_redirect_uri: str = "http://localhost:8000/oauth/callback"
    oauth_scope: str = "https://www.googleapis.com/auth/spreadsheets"
    spreadsheet_id: str = ""
    features_range: str = "Features!A:H"
    votes_range: str = "Votes!A:D"
    # Salt mixed into every identity hash; changing it resets vote deduplication
    hash_namespace: str = "7a37826f-0628-4fcd-a084-3990c8427745"
    encryption_key: str = ""  # Fernet key for refresh tokens at rest; plaintext when empty
    app_env: str = "development"  # "production" enables strict checks (Google credentials, ENCRYPTION_KEY)
    cors_origins: str = "*"
    enable_hsts: bool = False  # Set True in production behind HTTPS
    http_timeout_seconds: float = 30.0
    default_rate_limit: str = "120/minute"

    # OAuth token lifecycle
    authorization_poll_interval_seconds: float = 3.0
    authorization_poll_attempts: int = 5
    csrf_ttl_seconds: int = 600  # never below 60
    refreshed_token_min_ttl_seconds: int = 3600

    # Cache mirrors
    features_cache_ttl_seconds: int = 300
    vote_cache_ttl_seconds: int | None = None  # None = keep mirrored votes until evicted

    daily_feature_limit: int = 10  # per identity hash, 0 = unlimited

    @property
    def has_google_credentials(self) -> bool:
        return bool(self.google_client_id.strip() and self.google_client_secret.strip())

    def validate_production_config(self) -> None:
        """Raise if production config is incomplete (Google credentials, encryption key)."""
        if self.app_env != "production":
            return
        if not self.has_google_credentials:
            raise RuntimeError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set in production")
        if not self.encryption_key or len(self.encryption_key) < 32:
            raise RuntimeError(
                "ENCRYPTION_KEY must be set in production (min 32 chars). "
                'Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
            )
        if not self.spreadsheet_id:
            raise RuntimeError("SPREADSHEET_ID must be set in production")


settings = Settings()
