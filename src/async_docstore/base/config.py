# src/async_docstore/base/config.py

import logging
import os
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigurationError
from .interfaces import DEFAULT_WRITE_CONCERN_TIMEOUT_MS

log = logging.getLogger(__name__)


class Settings(BaseModel):
    """Connection and behaviour settings for a Database."""

    model_config = ConfigDict(frozen=True)

    uri: str = "mongodb://localhost:27017"
    database: str
    write_concern_w: Optional[Union[int, str]] = None
    write_concern_timeout_ms: int = Field(default=DEFAULT_WRITE_CONCERN_TIMEOUT_MS, ge=0)
    document_pool_enabled: bool = True
    server_selection_timeout_ms: int = Field(default=30000, gt=0)
    app_name: Optional[str] = None

    @field_validator("write_concern_w", mode="before")
    @classmethod
    def _parse_w(cls, value: Any) -> Any:
        if isinstance(value, str) and value.lstrip("-").isdigit():
            return int(value)
        return value

    @field_validator("write_concern_w")
    @classmethod
    def _check_w(cls, value: Any) -> Any:
        if isinstance(value, int) and value < 0:
            raise ValueError("write concern w must be >= 0")
        return value

    @classmethod
    def create(cls, **values: Any) -> "Settings":
        """Validate values, raising ConfigurationError instead of pydantic's error."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings: {e}") from e

    @classmethod
    def from_env(cls, prefix: str = "DOCSTORE_") -> "Settings":
        """
        Read settings from environment variables such as DOCSTORE_URI,
        DOCSTORE_DATABASE or DOCSTORE_WRITE_CONCERN_W. Unset variables keep
        their defaults.
        """
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{prefix}{name.upper()}")
            if raw is not None:
                values[name] = raw
        log.debug(f"Loaded settings from environment: {sorted(values)}")
        return cls.create(**values)

    def client_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "serverSelectionTimeoutMS": self.server_selection_timeout_ms,
        }
        if self.app_name:
            options["appname"] = self.app_name
        return options
