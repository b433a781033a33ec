"""Relay configuration, loaded from the environment or a .env file."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="OLLAMA_RELAY_", extra="ignore")

    log_level: str = "INFO"

    # Ollama daemon
    ollama_api_url: str = "http://localhost:11434"
    ollama_bin: str = "ollama"
    ollama_connect_timeout_s: float = 10.0
    cli_timeout_s: float = 120.0
    pull_stop_timeout_s: float = 5.0  # SIGTERM grace before SIGKILL

    # Fixed sampling parameters sent with every chat request
    chat_temperature: float = 0.7
    chat_top_k: int = 40
    chat_top_p: float = 0.9
    default_model: str = "llava-llama3"

    # HTTP surface
    max_request_bytes: int = 50 * 1024 * 1024  # 50 MB
    static_dir: Path = Path("public")
    cors_origins: list[str] = ["http://localhost:3000"]

    @property
    def ollama_cli(self) -> list[str]:
        return [self.ollama_bin]


settings = Settings()
