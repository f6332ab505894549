"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent
DEV_ENVS = ("dev", "development", "test")


class Settings:
    ENV: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    MAX_HISTORY: int
    PORT: int
    API_PREFIX: str
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    LOG_LEVEL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", os.getenv("NODE_ENV", "dev")).lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'careerbot.db'}")
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", str(24 * 7)))
        self.MAX_HISTORY = int(os.getenv("MAX_HISTORY", "50"))
        self.PORT = int(os.getenv("PORT", "3000"))
        self.API_PREFIX = os.getenv("API_PREFIX", "/api").rstrip("/")
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self._validate()

    @property
    def is_dev(self) -> bool:
        return self.ENV in DEV_ENVS

    def _validate(self):
        if not self.is_dev and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.MAX_HISTORY < 1:
            raise RuntimeError("MAX_HISTORY must be a positive integer")


settings = Settings()
