from typing import Optional
from urllib.parse import quote_plus

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseSettings):
    """Connection settings for the feed, speech and feedback tables."""

    dsn: Optional[str] = Field(
        default=None,
        description="Full SQLAlchemy URL; overrides the individual fields when set.",
    )
    host: str = "localhost"
    port: int = 5432
    username: str = "postgres"
    password: SecretStr = Field(default=SecretStr("postgres"))
    database: str = "speaking_feedback"
    echo: bool = False
    serverless: bool = Field(
        default=False,
        description="If true, disable connection pooling so serverless DBs can pause.",
    )

    @property
    def url(self) -> str:
        """SQLAlchemy URL, preferring an explicit DSN."""
        if self.dsn:
            return self.dsn
        username = quote_plus(self.username)
        password = quote_plus(self.password.get_secret_value())
        return (
            "postgresql+asyncpg://"
            f"{username}:{password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class OpenAIConfig(BaseSettings):
    """OpenAI chat, transcription and speech endpoints."""

    base_url: str = "https://api.openai.com/v1/"
    api_key: SecretStr | None = None

    model_config = SettingsConfigDict(
        env_prefix="OPENAI_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class GoogleConfig(BaseSettings):
    """Gemini through Google's OpenAI-compatible surface."""

    base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    api_key: SecretStr | None = None

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class AzureOpenAIConfig(BaseSettings):
    """Azure OpenAI deployment configuration."""

    endpoint: str = ""
    api_key: SecretStr | None = None
    api_version: str = "2024-10-21"

    model_config = SettingsConfigDict(
        env_prefix="AZURE_OPENAI_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class VllmConfig(BaseSettings):
    """Self-hosted vLLM server (supports guided decoding)."""

    base_url: str = "http://localhost:8001/v1/"
    api_key: SecretStr | None = None

    model_config = SettingsConfigDict(
        env_prefix="VLLM_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class HomeServerConfig(BaseSettings):
    """In-house OpenAI-compatible gateway."""

    base_url: str = "http://localhost:8002/v1/"
    api_key: SecretStr | None = None

    model_config = SettingsConfigDict(
        env_prefix="HOME_SERVER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class OpenKeyConfig(BaseSettings):
    """Third-party OpenAI-compatible reseller."""

    base_url: str = "https://api.openkey.cloud/v1/"
    api_key: SecretStr | None = None

    model_config = SettingsConfigDict(
        env_prefix="OPEN_KEY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class AwsConfig(BaseSettings):
    """Shared AWS credentials for Bedrock and Polly."""

    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    region: str = "us-east-1"

    model_config = SettingsConfigDict(
        env_prefix="AWS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class PollyConfig(BaseSettings):
    """Polly voice used by the text-to-speech endpoint."""

    region: str = "us-east-1"
    default_voice_id: str = "Joanna"
    engine: str = "neural"

    model_config = SettingsConfigDict(
        env_prefix="POLLY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class BedrockConfig(BaseSettings):
    """Bedrock model reached through the ``bedrock`` provider name."""

    region: str = Field(
        default="us-east-1",
        validation_alias="BEDROCK_REGION",
    )
    model_id: str = Field(
        default="amazon.nova-micro-v1:0",
        validation_alias="BEDROCK_MODEL_ID",
    )
    top_p: float = Field(
        default=0.9,
        validation_alias="BEDROCK_TOP_P",
        ge=0.0,
        le=1.0,
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class PhonemizerConfig(BaseSettings):
    """Phonemization service endpoint."""

    base_url: str = "http://localhost:8003/"
    api_key: SecretStr | None = None

    model_config = SettingsConfigDict(
        env_prefix="PHONEMIZER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class PipelineConfig(BaseSettings):
    """Feedback pipeline tuning knobs."""

    max_concurrent_requests: int = Field(default=5, ge=1)
    connect_timeout: float = Field(default=5.0, gt=0)
    read_timeout: float = Field(default=120.0, gt=0)
    connect_retries: int = Field(default=3, ge=0)
    stream_responses: bool = True
    feedback_order: str = Field(default="desc", pattern="^(asc|desc)$")
    feedback_lookup_limit: int = Field(default=20, ge=1)
    default_language: str = "en"

    model_config = SettingsConfigDict(
        env_prefix="PIPELINE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class Settings(BaseSettings):
    """Top-level service settings composed from the sub-configs."""

    app_name: str = "Speaking Feedback Service"
    app_version: str = "1.0.0"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    log_file: str = "logs/app.log"
    pipeline_log_file: str = "logs/feedback_pipeline.log"

    # Database
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # Providers
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    google: GoogleConfig = Field(default_factory=GoogleConfig)
    azure: AzureOpenAIConfig = Field(default_factory=AzureOpenAIConfig)
    vllm: VllmConfig = Field(default_factory=VllmConfig)
    home_server: HomeServerConfig = Field(default_factory=HomeServerConfig)
    open_key: OpenKeyConfig = Field(default_factory=OpenKeyConfig)
    phonemizer: PhonemizerConfig = Field(default_factory=PhonemizerConfig)

    # AWS
    aws: AwsConfig = Field(default_factory=AwsConfig)
    polly: PollyConfig = Field(default_factory=PollyConfig)
    bedrock: BedrockConfig = Field(default_factory=BedrockConfig)

    # Pipeline
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
