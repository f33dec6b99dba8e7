from typing import Optional

from pydantic_settings import BaseSettings


class ConfigError(Exception):
    """Raised when the service cannot start with the current configuration."""


class Settings(BaseSettings):
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 30.0
    openai_max_tokens: int = 200
    openai_temperature: float = 0.65

    whapi_api_key: str = ""
    whapi_api_url: str = "https://gate.whapi.cloud"
    whapi_timeout_seconds: float = 15.0

    port: int = 3000
    log_level: str = "INFO"

    debounce_seconds: float = 4.0
    max_history_pairs: int = 20

    human_override_minutes: float = 15
    escalation_silence_minutes: float = 20
    closing_silence_hours: float = 24

    rate_limit_hot_seconds: float = 5
    rate_limit_default_seconds: float = 60

    followup_enabled: bool = True
    followup_first_delay_minutes: float = 30
    followup_second_delay_minutes: float = 1440
    followup_max_nudges: int = 2

    operator_echo_seconds: float = 120

    state_file: str = "data/bot_state.json"
    keywords_file: Optional[str] = None
    knowledge_file: Optional[str] = None

    alert_bot_token: Optional[str] = None
    alert_chat_id: Optional[str] = None

    class Config:
        env_file = ".env"
        extra = "ignore"

    def require_secrets(self) -> None:
        """Fail fast when a collaborator secret is missing."""
        missing = []
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if not self.whapi_api_key:
            missing.append("WHAPI_API_KEY")
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")


settings = Settings()
