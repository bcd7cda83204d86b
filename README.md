# svckit

Small building blocks shared by backend services:

- `svckit.config`: typed configuration loaded from YAML. Environment variables can override values, and the result is validated.
- `svckit.cache`: a Redis-backed JSON cache. It supports key prefixes, tag-based invalidation, warm-up and in-process counters.
- `svckit.logger`: structured logging in JSON or console form, with bound fields and request context.

## Installation

```
pip install svckit
```

## Configuration

Configuration types are dataclasses with ordinary type annotations. Field metadata can set three things:

- `yaml`: the key name. It defaults to the field name, and `"-"` skips the field.
- `validate`: comma-separated rules from `required`, `oneof=...`, `min=...` and `max=...`.
- `inline`: a nested dataclass read from the enclosing mapping.

The package ships ready-made sections:

- `BaseConfig`
- `DatabaseConfig`
- `RedisConfig`
- `GRPCConfig`
- `SecurityConfig`
- `MonitoringConfig`

`load_config(path, AppConfig)` reads the YAML file and builds the dataclass. It then applies environment overrides and validates the result. An override is any non-empty environment variable named after the field path in upper case, with `-` turned into `_`. Examples are `DATABASE_HOST` and `SECURITY_RATE_LIMIT_RPS`. `convert_env_value` converts the override to the field's type:

- Booleans accept `true`, `1`, `false` and `0`.
- Integers and floats are parsed strictly.
- `list[str]` fields are split on commas, and each item is stripped.

```python
from dataclasses import dataclass, field
from svckit.config import BaseConfig, DatabaseConfig, get_environment, load_config_with_environment

@dataclass
class AppConfig:
    base: BaseConfig = field(default_factory=BaseConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

cfg = load_config_with_environment("config.yaml", get_environment(), AppConfig)
```

`load_config_with_environment` loads `config.<environment>.yaml` when that file exists. Otherwise it loads the base path.

`get_environment()` reads `ENVIRONMENT`, then `ENV`. It falls back to `"development"`.

Errors:

- Rule failures raise `ConfigValidationError`. It lists one message per failed field in `errors`.
- Read, parse and override failures raise `ConfigError`.
- `validate_config` and `apply_environment_overrides` can also be called on an instance directly.

## Cache

```python
from svckit.cache import CacheConfig, CacheKeyBuilder, CacheKeyNotFoundError, RedisCache, WarmupKey

cache = RedisCache(CacheConfig(addr="localhost:6379", key_prefix="svc"), "my-service")
keys = CacheKeyBuilder("app")

cache.set_with_tags(keys.user_key("42"), {"name": "Ada"}, 60, ["users"])
try:
    user = cache.get(keys.user_key("42"))
except CacheKeyNotFoundError:
    user = None

cache.warm([WarmupKey(keys.leaderboard_key("weekly"), [1, 2, 3], 300, ["boards"])])
cache.invalidate_by_tags(["users", "boards"])
print(cache.get_metrics().hit_rate)
```

Connecting:

- The constructor pings the server and raises `CacheError` if it cannot connect.
- An existing Redis client may be passed as `client=`.

Storing and removing values:

- Values are stored as JSON.
- `ttl` is a number of seconds or a `timedelta`. `None`, or a ttl that is not positive, means the key never expires.
- `delete_pattern` removes keys matching a glob pattern. `exists` reports whether a key is present.
- Every failing operation raises `CacheError`.

`CacheKeyBuilder` builds keys of the forms `prefix:user:<id>`, `prefix:test:<id>`, `prefix:user:<id>:tests`, `prefix:leaderboard:<category>` and `prefix:stats:<id>:<period>`.

## Logging

```python
from svckit.logger import context_with_request_id, new_logger

log = new_logger("production").with_service("orders")
ctx = context_with_request_id({}, "req-1")
log.with_context(ctx).info("order placed", order_id="o-7")
log.log_request(ctx, "GET", "/orders", 200, 0.012)
```

`new_logger(env)` has two output styles:

- For `prod` and `production` it writes JSON lines at info level and above to standard output.
- For any other name it writes coloured console lines at debug level and above.

`logger_from_config(LoggerConfig(...))` chooses:

- the level;
- the format, `json` or `text`;
- the output, `stdout`, `stderr` or `file` with `file_path`.

Loggers are immutable. `with_`, `with_fields`, `with_component`, `with_service`, `with_context` and `with_error` each return a new logger with more fields bound.

Context values are carried in plain mappings built with these helpers:

- `context_with_request_id`
- `context_with_user_id`
- `context_with_operation`
- `context_with_trace_id`

Helpers log common events:

- `log_request`
- `log_grpc_request`
- `log_database_query`
- `log_cache_operation`
- `log_business_event`
- `log_security`

`discard()` returns a logger that writes nothing. `testing_logger()` writes every level to standard error.

## What it does not do

- There is no module of application error types with codes mapped to HTTP or gRPC statuses.
- Cache counters live in the process only. `get_metrics()` returns them, but they are not exported to any metrics system.
- The tag index is in memory for each `RedisCache` instance. It is not shared between processes or kept across restarts.
- The package offers no command-line program or server. It is a library only.