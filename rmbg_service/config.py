"""
Configuration loader for the RMBG background-removal service.

Environment variables are centralized here. Only operational knobs live in
settings; the model contract (input size, blur kernel, resolution caps) is
fixed in the modules that use it.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MODEL_PATH = Path("resources") / "model.onnx"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Model
    rmbg_model_path: Path = Field(DEFAULT_MODEL_PATH)
    rmbg_providers: Optional[str] = Field(None)

    # API
    api_host: str = Field("127.0.0.1")
    api_port: int = Field(8000)
    log_level: str = Field("INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError("LOG_LEVEL must be one of CRITICAL|ERROR|WARNING|INFO|DEBUG")
        return level

    def provider_list(self) -> Optional[List[str]]:
        """Explicit onnxruntime providers, or None to let the loader pick."""
        if not self.rmbg_providers:
            return None
        providers = [p.strip() for p in self.rmbg_providers.split(",") if p.strip()]
        return providers or None


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()
