from pydantic_settings import BaseSettings
from functools import lru_cache

class Settings(BaseSettings):
    MONGO_URL: str = "mongodb://mongo:27017"
    MONGO_DB: str = "laundry"
    MONGO_TIMEOUT_MS: int = 2000
    REDIS_URL: str = "redis://redis:6379/0"
    # "mongo" | "memory"
    STORE_BACKEND: str = "mongo"
    # "redis" | "memory"
    PUBSUB_BACKEND: str = "redis"
    SHOP_TIMEZONE: str = "UTC"
    ORDER_ID_ATTEMPTS: int = 5
    LOG_LEVEL: str = "INFO"
    SERVICE_VERSION: str = "1.0.0"

    class Config:
        env_file = ".env"

@lru_cache
def get_settings() -> Settings:
    return Settings()
