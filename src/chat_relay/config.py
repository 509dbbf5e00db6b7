"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

DEFAULT_SYSTEM_INSTRUCTION = """
You are Monox AI, a smart assistant with the ability to Generate Images.
- When a user asks to CREATE, DRAW, or GENERATE an image, you MUST use the 'generate_image' tool.
- Do NOT refuse to generate images.
- If the user's prompt is simple (e.g., "draw a cat"), OPTIMIZE it to be descriptive (e.g., "a cute fluffy persian cat sitting on a velvet sofa, warm lighting, realistic style").
- Identify the user's language. If they ask in Indonesian, answer in Indonesian, but keep the image prompt in English for best quality.
""".strip()


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openrouter_api_key: SecretStr = Field(
        ...,
        validation_alias=AliasChoices("OPENROUTER_API_KEY", "openrouter_api_key"),
    )
    openrouter_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://openrouter.ai/api/v1"),
        validation_alias=AliasChoices("OPENROUTER_BASE_URL", "base_url"),
    )
    openrouter_app_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices(
            "OPENROUTER_APP_URL",
            "HTTP_REFERER",
            "http_referer",
        ),
    )
    openrouter_app_name: Optional[str] = Field(
        default="Monox AI",
        validation_alias=AliasChoices(
            "OPENROUTER_APP_TITLE",
            "X_TITLE",
            "x_title",
        ),
    )
    chat_model: str = Field(
        default="google/gemini-2.0-flash-001",
        validation_alias=AliasChoices("CHAT_MODEL", "chat_model"),
    )
    digest_model: str = Field(
        default="google/gemini-2.5-flash",
        validation_alias=AliasChoices("DIGEST_MODEL", "digest_model"),
    )
    system_instruction: str = Field(
        default=DEFAULT_SYSTEM_INSTRUCTION,
        validation_alias=AliasChoices("SYSTEM_INSTRUCTION", "system_instruction"),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("OPENROUTER_TIMEOUT", "timeout"),
        ge=1,
    )

    # Image generation
    huggingface_token: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("HUGGINGFACE_TOKEN", "huggingface_token"),
    )
    huggingface_image_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl(
            "https://router.huggingface.co/hf-inference/models/"
            "black-forest-labs/FLUX.1-schnell"
        ),
        validation_alias=AliasChoices(
            "HUGGINGFACE_IMAGE_URL", "huggingface_image_url"
        ),
    )
    pollinations_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://image.pollinations.ai/prompt"),
        validation_alias=AliasChoices(
            "POLLINATIONS_BASE_URL", "pollinations_base_url"
        ),
    )
    image_timeout_seconds: float = Field(
        default=60.0,
        ge=1,
        validation_alias=AliasChoices(
            "IMAGE_TIMEOUT_SECONDS", "image_timeout_seconds"
        ),
    )
    image_retry_delay_seconds: float = Field(
        default=2.0,
        ge=0,
        validation_alias=AliasChoices(
            "IMAGE_RETRY_DELAY_SECONDS", "image_retry_delay_seconds"
        ),
    )

    stream_deadline_seconds: float = Field(
        default=180.0,
        gt=0,
        validation_alias=AliasChoices(
            "STREAM_DEADLINE_SECONDS", "stream_deadline_seconds"
        ),
        description="Upper bound for one streaming relay invocation.",
    )

    # Daily digest
    digest_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "DIGEST_SCHEDULER_ENABLED", "digest_enabled"
        ),
    )
    digest_users_path: Path = Field(
        default_factory=lambda: Path("data/users.json"),
        validation_alias=AliasChoices("DIGEST_USERS_PATH", "digest_users_path"),
    )
    digest_history_path: Path = Field(
        default_factory=lambda: Path("data/digests.json"),
        validation_alias=AliasChoices(
            "DIGEST_HISTORY_PATH", "digest_history_path"
        ),
    )
    expo_push_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://exp.host/--/api/v2/push/send"),
        validation_alias=AliasChoices("EXPO_PUSH_URL", "expo_push_url"),
    )

    @property
    def image_primary_configured(self) -> bool:
        token = self.huggingface_token
        return token is not None and bool(token.get_secret_value().strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["DEFAULT_SYSTEM_INSTRUCTION", "PROJECT_ROOT", "Settings", "get_settings"]
