"""Client configuration: retry, backoff and polling settings from TOML."""

from __future__ import annotations

import math
import sys
from collections.abc import Mapping
from contextlib import suppress
from pathlib import Path
from typing import Any, Literal, cast

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from rpcretry.backoff import ExponentialBackoffPolicy
from rpcretry.retry import LimitedAttemptsRetryPolicy, LimitedTimeRetryPolicy, RetryPolicy
from rpcretry.rpc import DEFAULT_RPC_TIMEOUT_SECONDS

DEFAULT_CONFIG_PATH = Path("~/.config/rpcretry/config.toml").expanduser()
ENV_PREFIX = "RPCRETRY_"

RetryKind = Literal["attempts", "time"]
_VALID_RETRY_KINDS = {"attempts", "time"}
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARN", "ERROR"}


class RetrySettings(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    kind: RetryKind = "time"
    maximum_attempts: int = Field(default=3, ge=1)
    maximum_duration_seconds: float = Field(default=600.0, ge=0)

    def build(self) -> RetryPolicy:
        if self.kind == "attempts":
            return LimitedAttemptsRetryPolicy(self.maximum_attempts)
        return LimitedTimeRetryPolicy(self.maximum_duration_seconds)


class BackoffSettings(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    initial_delay_seconds: float = Field(default=0.01, ge=0)
    maximum_delay_seconds: float = Field(default=300.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: float = Field(default=0.5, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_bounds(self) -> BackoffSettings:
        if self.initial_delay_seconds > self.maximum_delay_seconds:
            raise ValueError("initial_delay_seconds must not exceed maximum_delay_seconds")
        return self

    def build(self) -> ExponentialBackoffPolicy:
        return ExponentialBackoffPolicy(
            self.initial_delay_seconds,
            self.maximum_delay_seconds,
            multiplier=self.multiplier,
            jitter=self.jitter,
        )


def _default_polling() -> RetrySettings:
    return RetrySettings(kind="time", maximum_duration_seconds=3600.0)


def _default_polling_backoff() -> BackoffSettings:
    return BackoffSettings(initial_delay_seconds=1.0, maximum_delay_seconds=60.0)


class ClientConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    retry: RetrySettings = Field(default_factory=RetrySettings)
    backoff: BackoffSettings = Field(default_factory=BackoffSettings)
    polling: RetrySettings = Field(default_factory=_default_polling)
    polling_backoff: BackoffSettings = Field(default_factory=_default_polling_backoff)
    rpc_timeout_seconds: float = Field(default=DEFAULT_RPC_TIMEOUT_SECONDS, gt=0)
    log_level: Literal["DEBUG", "INFO", "WARN", "ERROR"] = "INFO"

    def retry_policy(self) -> RetryPolicy:
        return self.retry.build()

    def backoff_policy(self) -> ExponentialBackoffPolicy:
        return self.backoff.build()

    def polling_policy(self) -> RetryPolicy:
        return self.polling.build()

    def polling_backoff_policy(self) -> ExponentialBackoffPolicy:
        return self.polling_backoff.build()


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _number(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def _sanitize_retry(raw: object, defaults: RetrySettings) -> RetrySettings:
    if not isinstance(raw, Mapping):
        return defaults
    settings = defaults.model_copy()
    kind = raw.get("kind")
    if isinstance(kind, str) and kind.strip().lower() in _VALID_RETRY_KINDS:
        settings.kind = cast(RetryKind, kind.strip().lower())
    attempts = _number(raw.get("maximum_attempts"))
    if attempts is not None and attempts >= 1 and attempts == int(attempts):
        settings.maximum_attempts = int(attempts)
    duration = _number(raw.get("maximum_duration_seconds"))
    if duration is not None and duration >= 0:
        settings.maximum_duration_seconds = duration
    return settings


def _sanitize_backoff(raw: object, defaults: BackoffSettings) -> BackoffSettings:
    if not isinstance(raw, Mapping):
        return defaults
    candidate: dict[str, object] = defaults.model_dump()
    for key in ("initial_delay_seconds", "maximum_delay_seconds", "multiplier", "jitter"):
        value = _number(raw.get(key))
        if value is not None:
            candidate[key] = value
    try:
        return BackoffSettings.model_validate(candidate)
    except ValidationError:
        return defaults


class EnvironmentOverrides(BaseSettings):
    """Raw ``RPCRETRY_*`` values; ``RPCRETRY_RETRY__KIND`` fills ``retry["kind"]``.

    Values stay unvalidated here and go through the same sanitizing as the
    TOML file.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        extra="ignore",
    )

    retry: dict[str, Any] = Field(default_factory=dict)
    backoff: dict[str, Any] = Field(default_factory=dict)
    polling: dict[str, Any] = Field(default_factory=dict)
    polling_backoff: dict[str, Any] = Field(default_factory=dict)
    rpc_timeout_seconds: str | None = None
    log_level: str | None = None


def _sanitize(raw: Mapping[str, object], base: ClientConfig | None = None) -> ClientConfig:
    cfg = ClientConfig() if base is None else base.model_copy(deep=True)
    cfg.retry = _sanitize_retry(raw.get("retry"), cfg.retry)
    cfg.backoff = _sanitize_backoff(raw.get("backoff"), cfg.backoff)
    cfg.polling = _sanitize_retry(raw.get("polling"), cfg.polling)
    cfg.polling_backoff = _sanitize_backoff(raw.get("polling_backoff"), cfg.polling_backoff)

    timeout = _number(raw.get("rpc_timeout_seconds"))
    if timeout is not None and timeout > 0:
        cfg.rpc_timeout_seconds = timeout

    log_level = raw.get("log_level")
    if isinstance(log_level, str):
        normalized = log_level.strip().upper()
        if normalized == "WARNING":
            normalized = "WARN"
        if normalized in _VALID_LOG_LEVELS:
            cfg.log_level = cast(Literal["DEBUG", "INFO", "WARN", "ERROR"], normalized)
    return cfg


def load_config(path: str | Path | None = None) -> ClientConfig:
    """Load the TOML file, then apply ``RPCRETRY_*`` environment overrides.

    Invalid values from either source fall back to the value beneath them.
    """
    resolved = get_config_path(path)
    raw: dict[str, object] = {}
    if resolved.exists():
        try:
            with resolved.open("rb") as handle:
                loaded = tomllib.load(handle)
        except (tomllib.TOMLDecodeError, OSError):
            loaded = {}
        if isinstance(loaded, dict):
            raw = loaded
    from_file = _sanitize(raw)
    overrides = EnvironmentOverrides().model_dump(exclude_none=True)
    return _sanitize(overrides, from_file)


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _toml_section(name: str, model: BaseModel) -> list[str]:
    lines = ["", f"[{name}]"]
    for key, value in model.model_dump().items():
        lines.append(f"{key} = {_toml_scalar(value)}")
    return lines


def save_config(config: ClientConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    lines = [
        f"rpc_timeout_seconds = {_toml_scalar(config.rpc_timeout_seconds)}",
        f"log_level = {_toml_scalar(config.log_level)}",
    ]
    lines.extend(_toml_section("retry", config.retry))
    lines.extend(_toml_section("backoff", config.backoff))
    lines.extend(_toml_section("polling", config.polling))
    lines.extend(_toml_section("polling_backoff", config.polling_backoff))
    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved
