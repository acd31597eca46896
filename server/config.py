"""
Relay configuration from environment variables
"""
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional


class ConfigurationError(Exception):
    pass


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000
    public_port: Optional[int] = None
    log_level: str = "INFO"
    session_ttl: float = 3600.0
    sweep_interval: float = 60.0
    outbox_size: int = 256
    rate_limit: int = 100

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        port = _int(env, "PORT", 3000)
        settings = cls(
            host=env.get("SERVER_HOST", "0.0.0.0"),
            port=port,
            public_port=_int(env, "RELAY_PUBLIC_PORT", None),
            log_level=env.get("RELAY_LOG_LEVEL", "INFO").upper(),
            session_ttl=_float(env, "RELAY_SESSION_TTL", 3600.0),
            sweep_interval=_float(env, "RELAY_SWEEP_INTERVAL", 60.0),
            outbox_size=_int(env, "RELAY_OUTBOX_SIZE", 256),
            rate_limit=_int(env, "RELAY_RATE_LIMIT", 100),
        )
        settings.validate()
        return settings

    def validate(self):
        for name in ("port", "public_port"):
            value = getattr(self, name)
            if value is not None and not 0 <= value <= 65535:
                raise ConfigurationError(f"{name} must be between 0 and 65535, got {value}")
        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(f"Unknown log level {self.log_level!r}")
        if self.session_ttl < 0:
            raise ConfigurationError("RELAY_SESSION_TTL must not be negative")
        if self.sweep_interval <= 0:
            raise ConfigurationError("RELAY_SWEEP_INTERVAL must be positive")
        if self.outbox_size < 1:
            raise ConfigurationError("RELAY_OUTBOX_SIZE must be at least 1")
        if self.rate_limit < 1:
            raise ConfigurationError("RELAY_RATE_LIMIT must be at least 1")

    @property
    def join_port(self) -> int:
        """Port remotes are told to connect to"""
        return self.port if self.public_port is None else self.public_port

    @property
    def eviction_enabled(self) -> bool:
        return self.session_ttl > 0

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.log_level)


def _int(env: Mapping[str, str], key: str, default: Optional[int]) -> Optional[int]:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from e


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from e
