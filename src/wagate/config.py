# src/wagate/config.py

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

PROJECT_DIR = Path(os.getenv("WAGATE_PROJECT_DIR", Path.cwd()))

load_dotenv(PROJECT_DIR / ".env")


def _env_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class GatewayConfig:
    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    api_key: str = ""
    frontend_origin: str = "*"

    # Sessions
    auth_dir: Path = field(default_factory=lambda: PROJECT_DIR / "wwebjs_auth")
    bridge_url: str = "http://127.0.0.1:3100"
    watchdog_interval: float = 300.0  # seconds between connectivity polls
    reconnect_delay: float = 10.0  # settle time before a passive reconnect
    media_timeout: float = 30.0

    # Rate limiting
    rate_limit_per_minute: int = 300
    rate_limit_whitelist: list[str] = field(
        default_factory=lambda: ["127.0.0.1", "::1"]
    )

    log_level: str = "INFO"
    log_file: str | None = None

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """Build a config from environment variables (and .env)."""
        return cls(
            host=os.getenv("WAGATE_HOST", "0.0.0.0"),
            port=int(os.getenv("WAGATE_PORT", os.getenv("PORT", "3000"))),
            api_key=os.getenv("API_KEY", ""),
            frontend_origin=os.getenv("FRONTEND_ORIGIN", "*"),
            auth_dir=Path(
                os.getenv("WAGATE_AUTH_DIR", str(PROJECT_DIR / "wwebjs_auth"))
            ),
            bridge_url=os.getenv("WAGATE_BRIDGE_URL", "http://127.0.0.1:3100"),
            watchdog_interval=float(os.getenv("WAGATE_WATCHDOG_INTERVAL", "300")),
            reconnect_delay=float(os.getenv("WAGATE_RECONNECT_DELAY", "10")),
            media_timeout=float(os.getenv("WAGATE_MEDIA_TIMEOUT", "30")),
            rate_limit_per_minute=int(os.getenv("WAGATE_RATE_LIMIT", "300")),
            rate_limit_whitelist=_env_list(
                "WAGATE_RATE_LIMIT_WHITELIST", "127.0.0.1,::1"
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE") or None,
        )


CONFIG = GatewayConfig.from_env()
