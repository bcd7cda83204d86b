"""Structured logging with bound fields, request context and JSON or console output."""

from __future__ import annotations

import dataclasses
import inspect
import json
import os
import sys
import traceback
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from types import FrameType
from typing import IO, Any

ENV_LOCAL = "local"
ENV_DEV = "dev"
ENV_DEVELOPMENT = "development"
ENV_PROD = "prod"
ENV_PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging severities, from least to most severe."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


class ContextKey(str, Enum):
    """Keys under which request information is carried in a context mapping."""

    REQUEST_ID = "request_id"
    USER_ID = "user_id"
    SERVICE = "service"
    OPERATION = "operation"
    TRACE_ID = "trace_id"


_SEVERITY = {
    LogLevel.DEBUG: 0,
    LogLevel.INFO: 1,
    LogLevel.WARN: 2,
    LogLevel.ERROR: 3,
    LogLevel.FATAL: 4,
}

_COLORS = {
    LogLevel.DEBUG: 35,
    LogLevel.INFO: 34,
    LogLevel.WARN: 33,
    LogLevel.ERROR: 31,
    LogLevel.FATAL: 31,
}

_CONTEXT_FIELDS = (
    ContextKey.REQUEST_ID,
    ContextKey.USER_ID,
    ContextKey.OPERATION,
    ContextKey.TRACE_ID,
)


def _meta(name: str, validate: str = "") -> dict[str, Any]:
    return {"yaml": name, "validate": validate, "inline": False}


@dataclass
class LoggerConfig:
    """Settings for a configured logger."""

    level: str = field(default="", metadata=_meta("level", "required,oneof=debug info warn error fatal"))
    format: str = field(default="", metadata=_meta("format", "required,oneof=json text"))
    service_name: str = field(default="", metadata=_meta("service_name", "required"))
    environment: str = field(default="", metadata=_meta("environment", "required"))
    output: str = field(default="", metadata=_meta("output", "required,oneof=stdout stderr file"))
    file_path: str = field(default="", metadata=_meta("file_path"))


class _Sink:
    """A destination for log lines; standard streams are looked up at write time."""

    def __init__(self, target: str | IO[str]) -> None:
        self._target = target

    def _stream(self) -> IO[str]:
        if isinstance(self._target, str):
            return sys.stderr if self._target == "stderr" else sys.stdout
        return self._target

    def write(self, line: str) -> None:
        stream = self._stream()
        stream.write(line + "\n")
        stream.flush()

    def sync(self) -> None:
        try:
            self._stream().flush()
        except (OSError, ValueError):
            pass


def _timestamp(when: datetime) -> str:
    offset = when.utcoffset()
    zone = "Z" if offset is not None and not offset else when.strftime("%z")
    return f"{when:%Y-%m-%dT%H:%M:%S}.{when.microsecond // 1000:03d}{zone}"


def _fallback(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


@dataclass(frozen=True)
class _Encoder:
    json: bool
    time_key: str = "ts"
    level_key: str = "level"
    message_key: str = "msg"
    caller_key: str = "caller"
    stacktrace_key: str = "stacktrace"
    color: bool = False

    def _level_text(self, level: LogLevel) -> str:
        if self.json:
            return level.value
        text = level.value.upper()
        return f"\x1b[{_COLORS[level]}m{text}\x1b[0m" if self.color else text

    def encode(
        self,
        when: datetime,
        level: LogLevel,
        message: str,
        caller: str | None,
        fields: Mapping[str, Any],
        stack: str | None,
    ) -> str:
        if self.json:
            record: dict[str, Any] = {
                self.level_key: self._level_text(level),
                self.time_key: _timestamp(when),
            }
            if caller is not None:
                record[self.caller_key] = caller
            record[self.message_key] = message
            record.update(fields)
            if stack:
                record[self.stacktrace_key] = stack
            return json.dumps(record, default=_fallback, separators=(",", ":"))

        parts = [_timestamp(when), self._level_text(level)]
        if caller is not None:
            parts.append(caller)
        parts.append(message)
        if fields:
            parts.append(json.dumps(dict(fields), default=_fallback))
        line = "\t".join(parts)
        return f"{line}\n{stack}" if stack else line


@dataclass(frozen=True)
class _Core:
    sink: _Sink
    encoder: _Encoder
    min_severity: int | None
    add_caller: bool = False
    stack_severity: int | None = None

    def enabled(self, level: LogLevel) -> bool:
        return self.min_severity is not None and _SEVERITY[level] >= self.min_severity


def _outside_frame() -> FrameType | None:
    frame = inspect.currentframe()
    while frame is not None and frame.f_code.co_filename == __file__:
        frame = frame.f_back
    return frame


def _short_caller(frame: FrameType) -> str:
    path = frame.f_code.co_filename
    directory = os.path.basename(os.path.dirname(path))
    name = os.path.basename(path)
    trimmed = f"{directory}/{name}" if directory else name
    return f"{trimmed}:{frame.f_lineno}"


def _millis(duration: timedelta | float) -> int:
    if not isinstance(duration, timedelta):
        duration = timedelta(seconds=duration)
    micros = duration // timedelta(microseconds=1)
    return micros // 1000 if micros >= 0 else -((-micros) // 1000)


def _event_json(data: Any) -> str:
    if dataclasses.is_dataclass(data) and not isinstance(data, type):
        data = dataclasses.asdict(data)
    try:
        return json.dumps(data, separators=(",", ":"))
    except (TypeError, ValueError):
        return ""


class Logger:
    """A logger that carries bound fields, a service name and an environment."""

    def __init__(
        self,
        core: _Core,
        service_name: str = "",
        environment: str = "",
        fields: Mapping[str, Any] | None = None,
    ) -> None:
        self._core = core
        self.service_name = service_name
        self.environment = environment
        self._fields: dict[str, Any] = dict(fields or {})

    def __repr__(self) -> str:
        return f"Logger(service_name={self.service_name!r}, environment={self.environment!r})"

    @property
    def fields(self) -> dict[str, Any]:
        """The fields bound to this logger."""
        return dict(self._fields)

    def _derive(self, extra: Mapping[str, Any], service_name: str | None = None) -> Logger:
        return Logger(
            self._core,
            self.service_name if service_name is None else service_name,
            self.environment,
            {**self._fields, **extra},
        )

    def _service_fields(self) -> dict[str, Any]:
        return {"service": self.service_name} if self.service_name else {}

    def with_(self, **kwargs: Any) -> Logger:
        """Return a logger with the given fields bound."""
        return self._derive(kwargs)

    def with_component(self, component: str) -> Logger:
        """Return a logger tagged with a component name."""
        return self._derive({"component": component})

    def with_service(self, service: str) -> Logger:
        """Return a logger for another service."""
        return self._derive({"service": service}, service_name=service)

    def sync(self) -> None:
        """Flush buffered output, ignoring failures."""
        self._core.sink.sync()

    def with_context(self, ctx: Mapping[Any, Any] | None) -> Logger:
        """Return a logger carrying the request information found in ``ctx``."""
        extra = self._service_fields()
        for key in _CONTEXT_FIELDS:
            value = (ctx or {}).get(key)
            if isinstance(value, str):
                extra[key.value] = value
        return self._derive(extra)

    def with_fields(self, fields: Mapping[str, Any]) -> Logger:
        """Return a logger with the service name and ``fields`` bound."""
        return self._derive({**self._service_fields(), **fields})

    def with_error(self, err: BaseException | None) -> Logger:
        """Return a logger carrying an error description."""
        extra: dict[str, Any] = {} if err is None else {"error": str(err)}
        extra.update(self._service_fields())
        return self._derive(extra)

    def _log(self, level: LogLevel, message: str, extra: Mapping[str, Any]) -> None:
        core = self._core
        if not core.enabled(level):
            return
        frame = _outside_frame()
        try:
            caller = _short_caller(frame) if core.add_caller and frame is not None else None
            stack = None
            if core.stack_severity is not None and _SEVERITY[level] >= core.stack_severity and frame is not None:
                stack = "".join(traceback.format_stack(frame)).rstrip("\n")
        finally:
            del frame
        line = core.encoder.encode(
            datetime.now().astimezone(), level, message, caller, {**self._fields, **extra}, stack
        )
        core.sink.write(line)

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log at debug level."""
        self._log(LogLevel.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Log at info level."""
        self._log(LogLevel.INFO, message, kwargs)

    def warn(self, message: str, **kwargs: Any) -> None:
        """Log at warn level."""
        self._log(LogLevel.WARN, message, kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log at error level."""
        self._log(LogLevel.ERROR, message, kwargs)

    def log_request(
        self,
        ctx: Mapping[Any, Any] | None,
        method: str,
        path: str,
        status_code: int,
        duration: timedelta | float,
    ) -> None:
        """Log a processed HTTP request."""
        self.with_context(ctx).info(
            "HTTP request processed",
            http_method=method,
            http_path=path,
            http_status=status_code,
            response_time_ms=_millis(duration),
            type="http_request",
        )

    def log_grpc_request(
        self,
        ctx: Mapping[Any, Any] | None,
        method: str,
        duration: timedelta | float,
        err: BaseException | None,
    ) -> None:
        """Log a gRPC request, at error level when it failed."""
        logger = self.with_context(ctx)
        fields: dict[str, Any] = {
            "grpc_method": method,
            "response_time_ms": _millis(duration),
            "type": "grpc_request",
        }
        if err is not None:
            logger.error("gRPC request failed", **fields, error=str(err))
        else:
            logger.info("gRPC request processed", **fields)

    def log_database_query(
        self,
        ctx: Mapping[Any, Any] | None,
        query: str,
        duration: timedelta | float,
        err: BaseException | None,
    ) -> None:
        """Log a database query, at error level when it failed."""
        logger = self.with_context(ctx)
        fields: dict[str, Any] = {
            "db_query": query,
            "query_time_ms": _millis(duration),
            "type": "database_query",
        }
        if err is not None:
            logger.error("Database query failed", **fields, error=str(err))
        else:
            logger.debug("Database query executed", **fields)

    def log_cache_operation(
        self,
        ctx: Mapping[Any, Any] | None,
        operation: str,
        key: str,
        hit: bool,
        duration: timedelta | float,
    ) -> None:
        """Log a cache operation at debug level."""
        self.with_context(ctx).debug(
            "Cache operation",
            cache_operation=operation,
            cache_key=key,
            cache_hit=hit,
            operation_time_ms=_millis(duration),
            type="cache_operation",
        )

    def log_business_event(self, ctx: Mapping[Any, Any] | None, event: str, data: Any) -> None:
        """Log a business event with its data encoded as JSON."""
        self.with_context(ctx).info(
            "Business event occurred",
            business_event=event,
            event_data=_event_json(data),
            type="business_event",
        )

    def log_security(
        self, ctx: Mapping[Any, Any] | None, event: str, details: str, severity: str
    ) -> None:
        """Log a security event at warn level."""
        self.with_context(ctx).warn(
            "Security event",
            security_event=event,
            security_details=details,
            severity=severity,
            type="security_event",
        )


def _development_core() -> _Core:
    return _Core(
        sink=_Sink("stdout"),
        encoder=_Encoder(json=False, color=True),
        min_severity=_SEVERITY[LogLevel.DEBUG],
        add_caller=True,
        stack_severity=_SEVERITY[LogLevel.ERROR],
    )


def _production_core() -> _Core:
    return _Core(
        sink=_Sink("stdout"),
        encoder=_Encoder(json=True),
        min_severity=_SEVERITY[LogLevel.INFO],
        add_caller=True,
        stack_severity=_SEVERITY[LogLevel.ERROR],
    )


def new_logger(env: str) -> Logger:
    """Create a logger suited to the named environment."""
    core = _production_core() if env in (ENV_PROD, ENV_PRODUCTION) else _development_core()
    return Logger(core, environment=env)


def _parse_level(level: Any) -> LogLevel:
    try:
        return LogLevel(level)
    except ValueError:
        return LogLevel.INFO


def logger_from_config(config: LoggerConfig) -> Logger:
    """Create a logger from explicit settings."""
    level = _parse_level(config.level)
    if config.format == "json":
        encoder = _Encoder(json=True, time_key="timestamp", level_key="level", message_key="message")
    else:
        encoder = _Encoder(json=False, color=True)

    if config.output == "stderr":
        sink = _Sink("stderr")
    elif config.output == "file":
        if not config.file_path:
            raise ValueError("file path is required when output is set to file")
        sink = _Sink(open(config.file_path, "a", encoding="utf-8"))
    else:
        sink = _Sink("stdout")

    core = _Core(
        sink=sink,
        encoder=encoder,
        min_severity=_SEVERITY[level],
        add_caller=True,
        stack_severity=_SEVERITY[LogLevel.ERROR],
    )
    return Logger(core, service_name=config.service_name, environment=config.environment)


def discard() -> Logger:
    """Return a logger that writes nothing."""
    return Logger(_Core(sink=_Sink("stdout"), encoder=_Encoder(json=True), min_severity=None))


def testing_logger() -> Logger:
    """Return a logger writing every level to standard error in console form."""
    core = _Core(
        sink=_Sink("stderr"),
        encoder=_Encoder(json=False),
        min_severity=_SEVERITY[LogLevel.DEBUG],
    )
    return Logger(core, service_name="test", environment="test")


def _context_with(ctx: Mapping[Any, Any] | None, key: ContextKey, value: str) -> dict[Any, Any]:
    return {**(ctx or {}), key: value}


def context_with_request_id(ctx: Mapping[Any, Any] | None, request_id: str) -> dict[Any, Any]:
    """Return a copy of ``ctx`` carrying a request id."""
    return _context_with(ctx, ContextKey.REQUEST_ID, request_id)


def context_with_user_id(ctx: Mapping[Any, Any] | None, user_id: str) -> dict[Any, Any]:
    """Return a copy of ``ctx`` carrying a user id."""
    return _context_with(ctx, ContextKey.USER_ID, user_id)


def context_with_operation(ctx: Mapping[Any, Any] | None, operation: str) -> dict[Any, Any]:
    """Return a copy of ``ctx`` carrying an operation name."""
    return _context_with(ctx, ContextKey.OPERATION, operation)


def context_with_trace_id(ctx: Mapping[Any, Any] | None, trace_id: str) -> dict[Any, Any]:
    """Return a copy of ``ctx`` carrying a trace id."""
    return _context_with(ctx, ContextKey.TRACE_ID, trace_id)