"""Environment-driven settings (.env supported) and logging setup."""

import logging
import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

DEFAULT_MAX_KDF_ITERATIONS = 10_000_000


class Settings(BaseModel):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    # "jwk" asks the server for raw RSA components, "pem" for passphrase PEM
    key_format: Literal["jwk", "pem"] = "jwk"
    max_kdf_iterations: int = Field(default=DEFAULT_MAX_KDF_ITERATIONS, ge=1)
    load_signing_key: bool = True

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value):
        return value.upper() if isinstance(value, str) else value


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Reads STASHCRYPT_* variables from the environment.

    env_file: optional path to a .env file; values already present in the
              environment win over the file.
    Returns: validated Settings (pydantic raises ValueError on bad values)
    """
    load_dotenv(env_file)

    raw = {
        "log_level": os.getenv("STASHCRYPT_LOG_LEVEL"),
        "key_format": os.getenv("STASHCRYPT_KEY_FORMAT"),
        "max_kdf_iterations": os.getenv("STASHCRYPT_MAX_KDF_ITERATIONS"),
        "load_signing_key": os.getenv("STASHCRYPT_LOAD_SIGNING_KEY"),
    }
    return Settings.model_validate({k: v for k, v in raw.items() if v is not None})


def configure_logging(settings: Settings) -> None:
    """Applies the configured level to the package logger."""
    logging.getLogger("stashcrypt").setLevel(settings.log_level)
