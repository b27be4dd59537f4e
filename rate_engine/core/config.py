from pydantic_settings import BaseSettings
from pathlib import Path
from typing import Optional

class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "Rate Resolution Engine"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Business rules
    MAX_WEIGHT_KG: float = 30.0  # hard ceiling, not data dependent
    EXPRESS_PRICE_MULTIPLIER: float = 1.6
    EXPRESS_DAYS_REDUCTION: int = 2
    DEFAULT_LEAD_TIME_DAYS: int = 5

    # Multi-source quoting
    QUOTE_SOURCE_TIMEOUT_SECONDS: float = 4.0
    STRICT_TIER_MATCHING: bool = False  # raise instead of first-match on overlapping tiers

    # Quote cache
    QUOTE_CACHE_TTL_SECONDS: int = 120  # 2 minutes
    QUOTE_CACHE_KEY_INCLUDES_QUANTITY: bool = True

    # Table validation
    VALIDATION_WEIGHT_FLOOR_KG: float = 0.1
    VALIDATION_WEIGHT_CEILING_KG: float = 30.0
    VALIDATION_EPSILON: float = 0.001
    VALIDATE_ZONE_COMPLETENESS: bool = True

    # Source access
    HTTP_FETCH_TIMEOUT_SECONDS: float = 4.0
    BUILTIN_DATA_DIR: Path = Path(__file__).resolve().parent.parent / "reference_data"
    TABLE_REGISTRY_PATH: Optional[Path] = None

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._validate_settings()

    def _validate_settings(self):
        """Validate critical settings"""
        if self.MAX_WEIGHT_KG <= 0:
            raise ValueError("MAX_WEIGHT_KG must be positive")

        if self.VALIDATION_WEIGHT_FLOOR_KG >= self.VALIDATION_WEIGHT_CEILING_KG:
            raise ValueError("VALIDATION_WEIGHT_FLOOR_KG must be below VALIDATION_WEIGHT_CEILING_KG")

        if self.QUOTE_SOURCE_TIMEOUT_SECONDS <= 0:
            raise ValueError("QUOTE_SOURCE_TIMEOUT_SECONDS must be positive")

# Create settings instance
settings = Settings()
