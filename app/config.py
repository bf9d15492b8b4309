from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # ─── Application ───────────────────────────────────────────────────────────
    APP_NAME: str = "Movers Taxi Dispatch"
    APP_ENV:  str = "development"
    APP_DEBUG: bool = True
    APP_HOST:  str = "0.0.0.0"
    APP_PORT:  int = 8000

    # ─── Databases ─────────────────────────────────────────────────────────────
    # core1: drivers, vehicles, assignment history
    # core2: users, bookings, payments, audit log
    CORE1_DATABASE_URL:       str
    CORE2_DATABASE_URL:       str
    DATABASE_POOL_SIZE:       int  = 10
    DATABASE_MAX_OVERFLOW:    int  = 20
    DATABASE_POOL_TIMEOUT:    int  = 30
    DATABASE_CONNECT_TIMEOUT: int  = 10
    DATABASE_ECHO:            bool = False

    # ─── JWT ───────────────────────────────────────────────────────────────────
    SECRET_KEY:                  str
    ALGORITHM:                   str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # ─── Dispatch ──────────────────────────────────────────────────────────────
    DEFAULT_SEARCH_RADIUS_KM: float = 50.0
    DEFAULT_NEAREST_LIMIT:    int   = 10
    MAX_NEAREST_LIMIT:        int   = 100
    ETA_MINUTES_PER_KM:       float = 2.0   # 30 km/h average

    # ─── Geocoding ─────────────────────────────────────────────────────────────
    GEOCODING_API_URL:         str = "https://maps.googleapis.com/maps/api/geocode/json"
    GEOCODING_API_KEY:         Optional[str] = None
    GEOCODING_TIMEOUT_SECONDS: float = 5.0

    # ─── CORS ──────────────────────────────────────────────────────────────────
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8000"

    def get_cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"

    model_config = {"env_file": ".env", "case_sensitive": True, "extra": "ignore"}


settings = Settings()
