import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv

BACKEND_DIR = Path(__file__).resolve().parents[1]

load_dotenv(BACKEND_DIR / ".env")

REQUIRED_SETTINGS = ("DATABASE_PATH", "ADMIN_PASSWORD", "AUTH_SECRET")


def _env(name: str, default: str = "") -> str:
    value = os.getenv(name, default) or ""
    normalized = value.strip()
    if len(normalized) >= 2 and normalized[0] == normalized[-1] and normalized[0] in {"'", '"'}:
        normalized = normalized[1:-1].strip()
    return normalized


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_csv_env(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    database_path: str = ""
    admin_password: str = ""
    auth_secret: str = ""
    site_url: str = "https://charlitron360.vercel.app"
    storage_dir: str = ""
    public_storage_url: str = ""
    openai_model: str = "gpt-4.1-mini"
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    facebook_url: str = ""
    instagram_url: str = ""
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_path=_env("DATABASE_PATH", str(BACKEND_DIR / "data" / "charlitron.sqlite3")),
            admin_password=_env("ADMIN_PASSWORD"),
            auth_secret=_env("AUTH_SECRET"),
            site_url=_env("SITE_URL", "https://charlitron360.vercel.app").rstrip("/"),
            storage_dir=_env("STORAGE_DIR", str(BACKEND_DIR / "data" / "storage")),
            public_storage_url=_env("PUBLIC_STORAGE_URL", "/storage").rstrip("/"),
            openai_model=_env("OPENAI_MODEL", "gpt-4.1-mini"),
            stripe_secret_key=_env("STRIPE_SECRET_KEY"),
            stripe_webhook_secret=_env("STRIPE_WEBHOOK_SECRET"),
            facebook_url=_env("CHARLITRON_FACEBOOK_URL"),
            instagram_url=_env("CHARLITRON_INSTAGRAM_URL"),
            cors_origins=_parse_csv_env("CORS_ORIGINS", "*"),
            log_level=_env("LOG_LEVEL", "INFO").upper() or "INFO",
            debug=_env_bool("APP_DEBUG", False),
        )

    def missing_required(self) -> List[str]:
        values = {
            "DATABASE_PATH": self.database_path,
            "ADMIN_PASSWORD": self.admin_password,
            "AUTH_SECRET": self.auth_secret,
        }
        return [name for name in REQUIRED_SETTINGS if not values.get(name)]

    def configuration_status(self) -> Dict[str, object]:
        missing = self.missing_required()
        return {
            "configured": not missing,
            "missing": missing,
            "payments_configured": bool(self.stripe_secret_key),
            "webhook_configured": bool(self.stripe_webhook_secret),
        }

    def social_links(self) -> Dict[str, str]:
        links = {"facebook": self.facebook_url, "instagram": self.instagram_url}
        return {key: value for key, value in links.items() if value}


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
