"""
Runtime configuration for the rendezvous server
"""
import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional


def _int_option(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class Config:
    host: str = "0.0.0.0"
    port: int = 8080
    heartbeat_interval_ms: int = 30000
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 65535:
            raise ValueError(f"port out of range: {self.port}")
        if self.heartbeat_interval_ms <= 0:
            raise ValueError("heartbeat_interval_ms must be positive")

    @property
    def heartbeat_interval(self) -> float:
        """Probe period in seconds"""
        return self.heartbeat_interval_ms / 1000.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Config":
        """Build a config from SERVER_HOST, PORT, HEARTBEAT_INTERVAL_MS and LOG_LEVEL"""
        env = os.environ if env is None else env
        return cls(
            host=env.get("SERVER_HOST") or cls.host,
            port=_int_option(env, "PORT", cls.port),
            heartbeat_interval_ms=_int_option(
                env, "HEARTBEAT_INTERVAL_MS", cls.heartbeat_interval_ms
            ),
            log_level=(env.get("LOG_LEVEL") or cls.log_level).upper(),
        )

    def with_overrides(self, **overrides) -> "Config":
        """Return a copy with every non-None override applied"""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "log_level" in changes:
            changes["log_level"] = str(changes["log_level"]).upper()
        return replace(self, **changes)
