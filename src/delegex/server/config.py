"""Server configuration from environment variables."""

from __future__ import annotations

import os


def _flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Settings:
    """Delegex server settings, read from environment variables with defaults."""

    def __init__(self) -> None:
        self.database_url: str = os.getenv(
            "DELEGEX_DATABASE_URL", "sqlite+aiosqlite:///delegex.db"
        )
        self.relay_url: str = os.getenv(
            "DELEGEX_RELAY_URL", "https://relay.wallet.risechain.com"
        )
        self.chain_id: int = int(os.getenv("DELEGEX_CHAIN_ID", "11155931"))
        self.relay_timeout: float = float(os.getenv("DELEGEX_RELAY_TIMEOUT", "15.0"))
        self.fee_token: str | None = os.getenv("DELEGEX_FEE_TOKEN") or None
        # Backend session key
        self.session_key: str | None = os.getenv("DELEGEX_SESSION_KEY") or None
        self.session_key_path: str | None = os.getenv("DELEGEX_SESSION_KEY_PATH") or None
        self.session_key_type: str = os.getenv("DELEGEX_SESSION_KEY_TYPE", "p256")
        self.session_key_soft_expiry_days: int = int(
            os.getenv("DELEGEX_SESSION_KEY_SOFT_EXPIRY_DAYS", "30")
        )
        # Identity verification
        self.challenge_ttl_seconds: int = int(
            os.getenv("DELEGEX_CHALLENGE_TTL_SECONDS", "600")
        )
        self.challenge_cleanup_interval: int = int(
            os.getenv("DELEGEX_CHALLENGE_CLEANUP_INTERVAL", "60")
        )
        self.app_name: str = os.getenv("DELEGEX_APP_NAME", "Delegex")
        # Serving
        self.host: str = os.getenv("DELEGEX_HOST", "0.0.0.0")
        self.port: int = int(os.getenv("DELEGEX_PORT", "8000"))
        self.cors_origins: str = os.getenv("DELEGEX_CORS_ORIGINS", "*")
        self.log_level: str = os.getenv("DELEGEX_LOG_LEVEL", "INFO").upper()
        self.debug: bool = _flag("DELEGEX_DEBUG")
