from datetime import datetime
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	env: str = Field(default="development", validation_alias="ENV")
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="google/gemini-2.5-flash", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://planwiseesl.com", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="PlanwiseESL", validation_alias="OPENROUTER_TITLE")

	# Replicate image generation
	replicate_api_token: str | None = Field(default=None, validation_alias="REPLICATE_API_TOKEN")
	replicate_base_url: str = Field(default="https://api.replicate.com/v1", validation_alias="REPLICATE_BASE_URL")
	replicate_model: str = Field(default="black-forest-labs/flux-schnell", validation_alias="REPLICATE_MODEL")
	image_poll_interval_seconds: float = Field(default=3.0, validation_alias="IMAGE_POLL_INTERVAL_SECONDS")
	image_poll_max_attempts: int = Field(default=30, validation_alias="IMAGE_POLL_MAX_ATTEMPTS")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

	# Credits granted to a freshly registered teacher
	default_credits: int = Field(default=5, validation_alias="DEFAULT_CREDITS")
	# ISO 8601 datetime with offset; free trial is off when unset or invalid
	free_trial_end_date: Optional[str] = Field(default=None, validation_alias="FREE_TRIAL_END_DATE")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	def free_trial_end(self) -> Optional[datetime]:
		if not self.free_trial_end_date:
			return None
		try:
			parsed = datetime.fromisoformat(self.free_trial_end_date.replace("Z", "+00:00"))
		except ValueError:
			return None
		if parsed.tzinfo is None:
			return None
		return parsed

settings = Settings()
