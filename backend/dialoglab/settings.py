from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
	# Inference API (OpenAI-compatible REST)
	openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
	openai_base_url: str = Field(default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL")
	chat_model: str = Field(default="gpt-4o-mini", validation_alias="CHAT_MODEL")
	vision_model: str = Field(default="gpt-4o", validation_alias="VISION_MODEL")
	tts_model: str = Field(default="tts-1", validation_alias="TTS_MODEL")
	tts_voice: str = Field(default="alloy", validation_alias="TTS_VOICE")
	transcribe_model: str = Field(default="whisper-1", validation_alias="TRANSCRIBE_MODEL")
	gateway_timeout: float = Field(default=30.0, validation_alias="GATEWAY_TIMEOUT")

	# Web server
	port: int = Field(default=3000, validation_alias="PORT")
	# Comma separated, "*" allows any origin
	allowed_origins: str = Field(default="*", validation_alias="ALLOWED_ORIGINS")
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# Teacher dashboard (single shared password)
	teacher_password: str | None = Field(default=None, validation_alias="TEACHER_PASSWORD")
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	teacher_token_expire_minutes: int = Field(default=480, validation_alias="TEACHER_TOKEN_EXPIRE_MINUTES")

	# Image quiz uploads
	upload_dir: str = Field(default="uploads", validation_alias="UPLOAD_DIR")
	max_upload_bytes: int = Field(default=10 * 1024 * 1024, validation_alias="MAX_UPLOAD_BYTES")

	# Abandoned vocabulary runs are evicted after this idle time
	vocab_run_ttl_minutes: int = Field(default=30, validation_alias="VOCAB_RUN_TTL_MINUTES")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	@property
	def origins(self) -> List[str]:
		return [o.strip() for o in self.allowed_origins.split(",") if o.strip()] or ["*"]


settings = Settings()
