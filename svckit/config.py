"""Typed configuration loading from YAML with environment overrides and validation.

Configuration types are dataclasses with real type annotations. Field metadata
may hold ``yaml`` (key name, defaults to the field name; ``"-"`` skips it),
``validate`` (comma-separated rules: required, oneof, min, max) and ``inline``
(a nested dataclass read from the enclosing mapping).
"""

import os
import re
import typing
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, TypeVar

import yaml

T = TypeVar("T")

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT64_LIMIT = 2**63
_MIN32_RULES = "required,min=32"
_MIN6_RULE = "min=6"


class ConfigError(Exception):
    """Raised when configuration cannot be loaded."""


class ConfigValidationError(ConfigError):
    """Raised when configuration values break their validation rules."""

    def __init__(self, errors: list[str], prefix: str = "") -> None:
        self.errors = list(errors)
        text = "\n".join(self.errors)
        super().__init__(f"{prefix}: {text}" if prefix else text)


def _setting(validate: str = "", default: Any = "") -> Any:
    return field(default=default, metadata={"validate": validate})


@dataclass
class BaseConfig:
    """Settings common to every service."""

    environment: str = _setting("required,oneof=development staging production")
    debug: bool = _setting(default=False)
    log_level: str = _setting("required,oneof=debug info warn error fatal")


@dataclass
class DatabaseConfig:
    """Relational database connection settings."""

    host: str = _setting("required")
    port: int = _setting("required,min=1,max=65535", 0)
    database: str = _setting("required")
    username: str = _setting("required")
    password: str = _setting()
    dsn: str = _setting()
    ssl_mode: str = _setting("oneof=disable require verify-ca verify-full")
    max_open_conns: int = _setting("min=1", 0)
    max_idle_conns: int = _setting("min=1", 0)
    conn_max_lifetime: str = _setting()


@dataclass
class RedisConfig:
    """Redis connection settings."""

    addr: str = _setting("required")
    password: str = _setting()
    db: int = _setting("min=0", 0)
    pool_size: int = _setting("min=1", 0)
    min_idle_conns: int = _setting("min=0", 0)


@dataclass
class GRPCConfig:
    """gRPC server settings."""

    port: int = _setting("required,min=1,max=65535", 0)
    timeout: int = _setting("min=1", 0)


@dataclass
class SecurityConfig:
    """Authentication, rate limiting and password policy settings."""

    jwt_secret: str = _setting(_MIN32_RULES)
    jwt_expiration: str = _setting("required")
    refresh_expiration: str = _setting("required")
    rate_limit_rps: int = _setting("min=1", 0)
    rate_limit_burst: int = _setting("min=1", 0)
    enable_strict_mode: bool = _setting(default=False)
    password_min_length: int = _setting(_MIN6_RULE, 0)
    password_require_upper: bool = _setting(default=False)
    password_require_lower: bool = _setting(default=False)
    password_require_digit: bool = _setting(default=False)
    password_require_special: bool = _setting(default=False)


@dataclass
class MonitoringConfig:
    """Metrics and health endpoint settings."""

    enabled: bool = _setting(default=False)
    prometheus_port: int = _setting("min=1,max=65535", 0)
    metrics_path: str = _setting()
    health_path: str = _setting()


def _is_instance(obj: Any) -> bool:
    return is_dataclass(obj) and not isinstance(obj, type)


def _is_type(tp: Any) -> bool:
    return isinstance(tp, type) and is_dataclass(tp)


def _yaml_name(f: Any) -> str:
    return f.metadata.get("yaml", f.name)


def _decode_value(tp: Any, value: Any, where: str) -> Any:
    if _is_type(tp):
        return _decode(tp, value, where)
    if typing.get_origin(tp) is list and isinstance(value, list):
        args = typing.get_args(tp)
        return [_decode_value(args[0], item, where) for item in value] if args else list(value)
    if typing.get_origin(tp) is dict and isinstance(value, Mapping):
        return dict(value)
    if tp is Any or (tp is bool and isinstance(value, bool)):
        return value
    if isinstance(value, bool):
        if tp is str:
            return "true" if value else "false"
    elif tp is int and isinstance(value, int):
        return value
    elif tp is float and isinstance(value, (int, float)):
        return float(value)
    elif tp is str and isinstance(value, (str, int, float)):
        return str(value)
    raise ValueError(f"{where}: cannot decode {value!r} as {tp!r}")


def _decode(cls: type[T], data: Any, path: str) -> T:
    if not isinstance(data, Mapping):
        raise ValueError(f"{path}: expected a mapping")
    values: dict[str, Any] = {}
    for f in fields(cls):
        name = _yaml_name(f)
        if _is_type(f.type) and f.metadata.get("inline"):
            values[f.name] = _decode(f.type, data, path)
        elif f.init and name and name != "-" and data.get(name) is not None:
            values[f.name] = _decode_value(f.type, data[name], f"{path}.{name}")
    return cls(**values)


def load_config(config_path: str | os.PathLike[str], target_type: type[T]) -> T:
    """Read a YAML file into ``target_type``, apply environment overrides and validate."""
    try:
        text = Path(config_path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to read config file: {exc}") from exc
    try:
        config = _decode(target_type, yaml.safe_load(text) or {}, target_type.__name__)
    except (yaml.YAMLError, ValueError) as exc:
        raise ConfigError(f"failed to parse config: {exc}") from exc
    try:
        apply_environment_overrides(config)
    except ConfigError as exc:
        raise ConfigError(f"failed to apply environment overrides: {exc}") from exc
    try:
        validate_config(config)
    except ConfigValidationError as exc:
        raise ConfigValidationError(exc.errors, "config validation failed") from exc
    return config


def load_config_with_environment(
    base_path: str | os.PathLike[str], environment: str, target_type: type[T]
) -> T:
    """Load ``name.<environment>.yaml`` when it exists, otherwise ``base_path``."""
    base = os.fspath(base_path)
    env_path = base.replace(".yaml", f".{environment}.yaml", 1)
    return load_config(env_path if os.path.exists(env_path) else base, target_type)


def build_env_name(prefix: str, name: str) -> str:
    """Build an environment variable name from a prefix and a YAML key."""
    env_name = name.replace("-", "_").upper()
    return f"{prefix}_{env_name}" if prefix else env_name


def convert_env_value(field_type: Any, value: str) -> Any:
    """Convert an environment string to a value of ``field_type``."""
    if field_type is str:
        return value
    if field_type is bool:
        if value in ("true", "1"):
            return True
        if value in ("false", "0"):
            return False
        raise ValueError(f"invalid boolean value: {value}")
    if field_type is int:
        if not _INT_PATTERN.fullmatch(value) or not -_INT64_LIMIT <= int(value) < _INT64_LIMIT:
            raise ValueError(f"invalid integer value: {value}")
        return int(value)
    if field_type is float:
        try:
            if "_" in value or value != value.strip():
                raise ValueError
            return float(value)
        except ValueError:
            raise ValueError(f"invalid float value: {value}") from None
    if typing.get_origin(field_type) is list:
        args = typing.get_args(field_type)
        if args == (str,):
            return [item.strip() for item in value.split(",")]
        raise ValueError(f"unsupported slice element type: {args[0] if args else Any!r}")
    raise ValueError(f"unsupported field type: {field_type!r}")


def _apply_overrides(obj: Any, prefix: str) -> None:
    for f in fields(obj):
        inline = bool(f.metadata.get("inline"))
        name = _yaml_name(f)
        if name == "-" or (not name and not inline):
            continue
        current = getattr(obj, f.name)
        if _is_instance(current):
            _apply_overrides(current, prefix if inline else build_env_name(prefix, name))
            continue
        env_name = build_env_name(prefix, name)
        raw = os.environ.get(env_name, "")
        if raw:
            try:
                setattr(obj, f.name, convert_env_value(f.type, raw))
            except ValueError as exc:
                raise ConfigError(
                    f"failed to set field {f.name} from env {env_name}: {exc}"
                ) from exc


def apply_environment_overrides(config: Any) -> None:
    """Overwrite fields of a dataclass instance from environment variables, in place."""
    if not _is_instance(config):
        raise ConfigError("config must be a dataclass instance")
    _apply_overrides(config, "")


def _size(value: Any) -> Any:
    return len(value) if isinstance(value, (str, list, dict, tuple, set)) else value


def _rule_holds(rule: str, param: str, value: Any) -> bool:
    if rule == "required":
        return _is_instance(value) or (value is not None and bool(_size(value)))
    if rule == "oneof":
        if isinstance(value, str):
            return value in param.split()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return any(value == float(option) for option in param.split())
        return False
    if rule == "min":
        return _size(value) >= float(param)
    if rule == "max":
        return _size(value) <= float(param)
    raise ValueError(f"unknown validation rule: {rule}")


def _validation_errors(obj: Any, namespace: str) -> Iterator[str]:
    for f in fields(obj):
        value = getattr(obj, f.name)
        key = f"{namespace}.{f.name}"
        specs = filter(None, f.metadata.get("validate", "").split(","))
        failed = next(
            (rule for rule, _, param in (s.partition("=") for s in specs)
             if not _rule_holds(rule, param, value)),
            None,
        )
        if failed is not None:
            yield f"Key: '{key}' Error:Field validation for '{f.name}' failed on the '{failed}' tag"
        elif _is_instance(value):
            yield from _validation_errors(value, key)


def validate_config(config: Any) -> None:
    """Check every field of a dataclass instance against its validation rules."""
    if not _is_instance(config):
        raise ConfigValidationError(["validation expects a dataclass instance"])
    errors = list(_validation_errors(config, type(config).__name__))
    if errors:
        raise ConfigValidationError(errors)


def get_environment() -> str:
    """Return the deployment environment named by ENVIRONMENT or ENV."""
    return os.environ.get("ENVIRONMENT") or os.environ.get("ENV") or "development"