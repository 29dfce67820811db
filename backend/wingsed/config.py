"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    DATABASE_URL: str
    CLERK_SECRET_KEY: str
    CLERK_WEBHOOK_SECRET: str
    CLERK_API_URL: str
    CLERK_JWKS_URL: str
    CORS_ORIGINS: list
    THROTTLE_TTL: int
    THROTTLE_LIMIT: int
    WHATSAPP_PHONE_NUMBER: str
    TYPESENSE_HOST: str
    TYPESENSE_PORT: int
    TYPESENSE_PROTOCOL: str
    TYPESENSE_API_KEY: str
    LOG_LEVEL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'wingsed.db'}")
        self.CLERK_SECRET_KEY = os.getenv("CLERK_SECRET_KEY", "")
        self.CLERK_WEBHOOK_SECRET = os.getenv("CLERK_WEBHOOK_SECRET", "")
        self.CLERK_API_URL = os.getenv("CLERK_API_URL", "https://api.clerk.com/v1").rstrip("/")
        self.CLERK_JWKS_URL = os.getenv("CLERK_JWKS_URL", f"{self.CLERK_API_URL}/jwks")
        self.CORS_ORIGINS = [
            o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()
        ]
        self.THROTTLE_TTL = int(os.getenv("THROTTLE_TTL", "900"))  # 15 minutes
        self.THROTTLE_LIMIT = int(os.getenv("THROTTLE_LIMIT", "100"))
        self.WHATSAPP_PHONE_NUMBER = os.getenv("WHATSAPP_PHONE_NUMBER", "918658805653")
        self.TYPESENSE_HOST = os.getenv("TYPESENSE_HOST", "localhost")
        self.TYPESENSE_PORT = int(os.getenv("TYPESENSE_PORT", "8108"))
        self.TYPESENSE_PROTOCOL = os.getenv("TYPESENSE_PROTOCOL", "http")
        self.TYPESENSE_API_KEY = os.getenv("TYPESENSE_API_KEY", "wingsed_typesense_dev_key")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.CLERK_SECRET_KEY:
            raise RuntimeError("CLERK_SECRET_KEY must be set in non-dev environments")
        if "*" in self.CORS_ORIGINS:
            raise RuntimeError("CORS_ORIGINS must list explicit origins, not '*'")


settings = Settings()
