"""
Pipeline Configuration
======================
Validated configuration for the request-delivery pipeline.

Usage:
    from semantix_core.config import PipelineConfig

    config = PipelineConfig(max_concurrent=5, recovery_strategy="adaptive")
    config = PipelineConfig.from_env()                 # SEMANTIX_* variables
    config = PipelineConfig.from_profile("production", base_url="https://api.example.com")
"""

import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional

from .circuit_breaker.models import (
    CONFIG_PROFILES,
    RECOVERY_STRATEGY_NAMES,
    CircuitBreakerConfig,
    normalize_strategy_name,
)
from .exceptions import ConfigurationError
from .retry.policy import RetryPolicy

ENV_PREFIX = "SEMANTIX_"


@dataclass
class PipelineConfig:
    """Configuration for one orchestrator instance."""
    base_url: str = "http://localhost:3000"
    request_timeout_ms: int = 30000
    max_concurrent: int = 5
    retry_attempts: int = 3
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 30000
    retry_jitter: bool = True
    circuit_threshold: int = 5
    circuit_timeout_ms: int = 60000
    recovery_strategy: str = "fixed"
    recovery_options: Dict[str, Any] = field(default_factory=dict)
    window_size: int = 100
    max_history: int = 1000

    def __post_init__(self):
        self.recovery_strategy = normalize_strategy_name(self.recovery_strategy)
        self.validate()

    def validate(self) -> None:
        """Fail fast on any violated constraint."""
        errors: List[str] = []

        if not _is_int(self.max_concurrent) or self.max_concurrent <= 0:
            errors.append("max_concurrent must be an integer greater than 0")
        if not _is_int(self.retry_attempts) or self.retry_attempts < 0:
            errors.append("retry_attempts must be an integer of 0 or greater")
        if not _is_int(self.retry_base_delay_ms) or self.retry_base_delay_ms < 1000:
            errors.append("retry_base_delay_ms must be an integer of at least 1000")
        if not _is_int(self.retry_max_delay_ms) or self.retry_max_delay_ms < self.retry_base_delay_ms:
            errors.append("retry_max_delay_ms must be at least retry_base_delay_ms")
        if not _is_int(self.circuit_threshold) or self.circuit_threshold < 1:
            errors.append("circuit_threshold must be an integer of at least 1")
        if not _is_int(self.circuit_timeout_ms) or self.circuit_timeout_ms < 1000:
            errors.append("circuit_timeout_ms must be an integer of at least 1000")
        if self.recovery_strategy not in RECOVERY_STRATEGY_NAMES:
            errors.append(
                f"recovery_strategy must be one of {', '.join(RECOVERY_STRATEGY_NAMES)}"
            )
        if not _is_int(self.window_size) or self.window_size < 1:
            errors.append("window_size must be an integer of at least 1")
        if not isinstance(self.request_timeout_ms, (int, float)) or self.request_timeout_ms <= 0:
            errors.append("request_timeout_ms must be greater than 0")
        if not _is_int(self.max_history) or self.max_history < 1:
            errors.append("max_history must be an integer of at least 1")
        if not self.base_url:
            errors.append("base_url must not be empty")

        if errors:
            raise ConfigurationError("; ".join(errors), details=errors)

    @property
    def request_timeout(self) -> float:
        """Transport time budget in seconds."""
        return self.request_timeout_ms / 1000

    def to_circuit_breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            threshold=self.circuit_threshold,
            timeout_ms=self.circuit_timeout_ms,
            window_size=self.window_size,
            recovery_strategy=self.recovery_strategy,
            strategy_options=dict(self.recovery_options),
        )

    def to_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_attempts,
            base_delay_ms=self.retry_base_delay_ms,
            max_delay_ms=self.retry_max_delay_ms,
            jitter=self.retry_jitter,
        )

    def updated(self, **changes: Any) -> "PipelineConfig":
        """Return a validated copy with `changes` applied."""
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        return replace(self, **changes)

    @classmethod
    def from_profile(cls, name: str, **overrides: Any) -> "PipelineConfig":
        """Apply a circuit breaker profile, then overrides."""
        profile = CircuitBreakerConfig.from_profile(name)
        settings: Dict[str, Any] = {
            "circuit_threshold": profile.threshold,
            "circuit_timeout_ms": profile.timeout_ms,
            "window_size": profile.window_size,
            "recovery_strategy": profile.recovery_strategy,
            "recovery_options": dict(profile.strategy_options),
        }
        settings.update(overrides)
        return cls(**settings)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        prefix: str = ENV_PREFIX,
        **overrides: Any,
    ) -> "PipelineConfig":
        """
        Build a config from environment variables.

        Each field maps to ``<prefix><FIELD_NAME>``, e.g. SEMANTIX_MAX_CONCURRENT.
        SEMANTIX_PROFILE selects a circuit breaker profile first.
        """
        env = os.environ if environ is None else environ
        settings: Dict[str, Any] = {}

        for f in fields(cls):
            if f.name == "recovery_options":
                continue
            raw = env.get(f"{prefix}{f.name.upper()}")
            if raw is None:
                continue
            settings[f.name] = _coerce(f.name, raw, f.default)

        settings.update(overrides)

        profile = env.get(f"{prefix}PROFILE")
        if profile:
            return cls.from_profile(profile, **settings)
        return cls(**settings)

    @staticmethod
    def list_profiles() -> List[str]:
        return list(CONFIG_PROFILES)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _coerce(name: str, raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError:
            raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    return raw
