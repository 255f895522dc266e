"""
Application configuration management
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings"""
    
    # API Settings
    API_TITLE: str = "TikTok Live Relay"
    API_VERSION: str = "1.0.0"
    API_DESCRIPTION: str = "Multi-tenant TikTok Live event relay with per-streamer room isolation"
    
    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ALLOW_ORIGINS: List[str] = ["*"]
    
    # Connection pool settings
    UPSTREAM_CONNECT_TIMEOUT_SECONDS: float = 30.0
    
    # Broadcast settings
    BROADCAST_SEND_TIMEOUT_SECONDS: float = 5.0  # a viewer socket slower than this is dropped
    
    # Janitor settings
    JANITOR_INTERVAL_SECONDS: float = 60.0
    IDLE_THRESHOLD_SECONDS: float = 300.0  # 5 minutes with no subscribers and no events
    
    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
