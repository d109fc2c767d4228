import json
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load env values for components that read os.environ directly (e.g., boto3 credential chain).
_project_root = Path(__file__).resolve().parents[1]
load_dotenv(_project_root / ".env", override=False)


def _coerce_json(value: str):
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"

    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_POOL_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30

    BACKEND_CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    ARTIFACT_STORAGE_BUCKET: str | None = None
    ARTIFACT_STORAGE_REGION: str = "us-east-1"
    ARTIFACT_STORAGE_ENDPOINT: str | None = None
    ARTIFACT_STORAGE_ACCESS_KEY: str | None = None
    ARTIFACT_STORAGE_SECRET_KEY: str | None = None
    ARTIFACT_STORAGE_FORCE_PATH_STYLE: bool = False
    ARTIFACT_STORAGE_PRESIGN_TTL_SECONDS: int = 60 * 15
    ARTIFACT_STORAGE_TIMEOUT_SECONDS: float = 20.0
    ARTIFACT_STORAGE_MAX_ATTEMPTS: int = 3
    # Prefix deletion refuses anything shorter than this.
    ARTIFACT_PREFIX_MIN_LENGTH: int = 10

    PUBLISH_UPLOAD_CONCURRENCY: int = 8
    PUBLISH_UPLOAD_TIMEOUT_SECONDS: float = 120.0

    # CloudFront KeyValueStore read by the edge function. Unset means routing is skipped.
    ROUTING_KVS_ARN: str | None = None
    ROUTING_REGION: str = "us-east-1"
    ROUTING_TIMEOUT_SECONDS: float = 10.0
    ROUTING_CAS_MAX_ATTEMPTS: int = 3

    SITE_PUBLIC_BASE_DOMAIN: str = "sites.localhost"
    SITE_PUBLIC_SCHEME: str = "https"

    TEMPORAL_ADDRESS: str = "localhost:7233"
    TEMPORAL_NAMESPACE: str = "default"
    TEMPORAL_TASK_QUEUE: str = "site-deploy"
    RECLAIM_ACTIVITY_TIMEOUT_MINUTES: int = 10
    RECLAIM_ACTIVITY_MAX_ATTEMPTS: int = 5

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def split_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("SITE_PUBLIC_BASE_DOMAIN")
    @classmethod
    def strip_base_domain(cls, value: str) -> str:
        return value.strip().strip(".").lower()

    model_config = SettingsConfigDict(env_file=".env", env_json_loads=_coerce_json, extra="ignore")


settings = Settings()
