"""Pydantic models describing imapbox configuration documents."""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


DEFAULT_SSL_PORT = 993
DEFAULT_PLAIN_PORT = 143


class ServerConfig(BaseModel):
    """Connection parameters for one IMAP account."""

    model_config = ConfigDict(extra="forbid")

    host: str = Field(min_length=1)
    username: str
    password: str = Field(repr=False)
    port: Optional[int] = Field(default=None, gt=0, lt=65536)
    ssl: bool = True
    timeout: Optional[float] = Field(default=None, gt=0)
    max_actions_per_minute: int = Field(default=500, ge=0)
    log_level: Literal["DEBUG", "INFO", "WARN", "ERROR"] = "WARN"

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.upper()
            if value == "WARNING":
                return "WARN"
        return value

    @model_validator(mode="after")
    def _default_port(self) -> "ServerConfig":
        if self.port is None:
            self.port = DEFAULT_SSL_PORT if self.ssl else DEFAULT_PLAIN_PORT
        return self

    @property
    def default_port(self) -> int:
        """Protocol default port for the configured transport."""

        return DEFAULT_SSL_PORT if self.ssl else DEFAULT_PLAIN_PORT
