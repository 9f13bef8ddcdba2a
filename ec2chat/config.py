"""
Application configuration using Pydantic Settings.
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Power toggling
    admin_password: Optional[str] = None

    # EC2 instance hosting the local model
    ec2_instance_id: Optional[str] = None
    aws_region: str = "us-east-1"
    my_aws_access_key: Optional[str] = None
    my_aws_secret_key: Optional[str] = None

    # Local (Ollama) backend
    ollama_model: str = "dolphin-llama3:8b"
    ollama_port: int = 11434
    local_timeout_seconds: float = 120.0

    # Cloud (OpenAI-compatible) backend
    hf_token: Optional[str] = None
    cloud_model: str = "moonshotai/Kimi-K2.5:novita"
    cloud_model_name: str = "Kimi-K2.5"
    cloud_base_url: str = "https://router.huggingface.co/v1"

    poll_interval_seconds: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Global settings instance
settings = Settings()
