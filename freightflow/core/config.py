"""
Application configuration with environment variables.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Optional, List


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
        validate_default=True,
    )

    # Application
    APP_NAME: str = "FreightFlow"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database
    POSTGRES_USER: str = "freightflow"
    POSTGRES_PASSWORD: str = "freightflow"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "freightflow"
    DATABASE_URL: Optional[str] = None

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # Fallback classification model
    LLM_PROVIDER: str = "mock"  # mock, openai, anthropic
    OPENAI_API_KEY: Optional[str] = None
    ANTHROPIC_API_KEY: Optional[str] = None
    LLM_MODEL_OPENAI: str = "gpt-4o-mini"
    LLM_MODEL_ANTHROPIC: str = "claude-3-5-haiku-latest"
    LLM_TIMEOUT_SECONDS: float = 30.0
    LLM_MAX_RETRIES: int = 3
    LLM_BACKOFF_BASE: float = 1.0
    LLM_CALL_DELAY_SECONDS: float = 0.5  # fixed delay between external model calls

    # Classification thresholds (0-100)
    CLASSIFICATION_MIN_CONFIDENCE: int = 85
    CLASSIFICATION_LOW_CONFIDENCE_FLOOR: int = 70
    CLASSIFICATION_USE_LLM_FALLBACK: bool = True

    # Comma-separated list of the operating company's own mail domains
    OPERATING_COMPANY_DOMAINS: str = "intoglo.com,intoglo.co,intoglo.in,intoglobal.com"

    # Inbound shipment_notice has contradicting mappings across carriers.
    # Set to "none" to ignore it for workflow derivation.
    SHIPMENT_NOTICE_STATE: str = "arrival_notice_received"

    # Batch processing
    BATCH_PAGE_SIZE: int = 100
    WORKER_THREADS: int = 4
    MAX_MESSAGE_ATTEMPTS: int = 3
    # Claims older than this are treated as abandoned by a dead worker
    PROCESSING_CLAIM_TIMEOUT_SECONDS: int = 1800

    # Action rules
    ACTION_RULES_CACHE_TTL_SECONDS: int = 300  # 5 minutes

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def assemble_db_url(cls, v: Optional[str], info) -> str:
        if isinstance(v, str) and v:
            return v

        data = info.data
        user = data.get("POSTGRES_USER", "freightflow")
        password = data.get("POSTGRES_PASSWORD", "freightflow")
        host = data.get("POSTGRES_HOST", "postgres")
        port = data.get("POSTGRES_PORT", "5432")
        db = data.get("POSTGRES_DB", "freightflow")

        return f"postgresql://{user}:{password}@{host}:{port}/{db}"

    @field_validator('CLASSIFICATION_MIN_CONFIDENCE', 'CLASSIFICATION_LOW_CONFIDENCE_FLOOR')
    @classmethod
    def validate_confidence_range(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError("Confidence thresholds must be between 0 and 100")
        return v

    @field_validator('CLASSIFICATION_LOW_CONFIDENCE_FLOOR')
    @classmethod
    def validate_floor_below_threshold(cls, v: int, info) -> int:
        """The low-confidence band must sit below the acceptance threshold."""
        threshold = info.data.get("CLASSIFICATION_MIN_CONFIDENCE", 85)
        if v > threshold:
            raise ValueError(
                "CLASSIFICATION_LOW_CONFIDENCE_FLOOR cannot exceed "
                "CLASSIFICATION_MIN_CONFIDENCE"
            )
        return v

    @field_validator('LLM_PROVIDER')
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in {"mock", "openai", "anthropic"}:
            raise ValueError(f"Unsupported LLM_PROVIDER: {v}")
        return v

    @property
    def company_domains(self) -> List[str]:
        return [
            d.strip().lower()
            for d in self.OPERATING_COMPANY_DOMAINS.split(",")
            if d.strip()
        ]


settings = Settings()
