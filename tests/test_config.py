from dataclasses import dataclass, field

import pytest

from svckit.config import (
    BaseConfig,
    ConfigError,
    ConfigValidationError,
    DatabaseConfig,
    GRPCConfig,
    MonitoringConfig,
    RedisConfig,
    SecurityConfig,
    apply_environment_overrides,
    build_env_name,
    convert_env_value,
    get_environment,
    load_config,
    load_config_with_environment,
    validate_config,
)


@dataclass
class BrokerConfig:
    brokers: list[str] = field(default_factory=list, metadata={"yaml": "brokers"})


@dataclass
class ServiceConfig:
    base: BaseConfig = field(default_factory=BaseConfig, metadata={"yaml": "", "inline": True})
    database: DatabaseConfig = field(default_factory=DatabaseConfig, metadata={"yaml": "database"})


_ENV_NAMES = [
    "ENVIRONMENT",
    "ENV",
    "DEBUG",
    "LOG_LEVEL",
    "BROKERS",
    "DATABASE_HOST",
    "DATABASE_PORT",
    "DATABASE_DATABASE",
    "DATABASE_USERNAME",
    "DATABASE_PASSWORD",
    "DATABASE_DSN",
    "DATABASE_SSL_MODE",
    "DATABASE_MAX_OPEN_CONNS",
    "DATABASE_MAX_IDLE_CONNS",
    "DATABASE_CONN_MAX_LIFETIME",
    "PORT",
    "TIMEOUT",
]

VALID_YAML = """\
environment: development
debug: true
log_level: info
database:
  host: localhost
  port: 5432
  database: app
  username: user
  ssl_mode: disable
  max_open_conns: 10
  max_idle_conns: 5
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_slice_from_env_string():
    result = convert_env_value(list[str], "broker1:9092,broker2:9092,broker3:9092")
    assert result == ["broker1:9092", "broker2:9092", "broker3:9092"]


def test_slice_override_applied_to_config(monkeypatch):
    monkeypatch.setenv("BROKERS", "broker1:9092, broker2:9092 ,broker3:9092")
    config = BrokerConfig()
    apply_environment_overrides(config)
    assert config.brokers == ["broker1:9092", "broker2:9092", "broker3:9092"]


def test_unsupported_slice_element():
    with pytest.raises(ValueError, match="unsupported slice element type"):
        convert_env_value(list[int], "1,2")


def test_unsupported_field_type():
    with pytest.raises(ValueError, match="unsupported field type"):
        convert_env_value(dict, "x")


@pytest.mark.parametrize("raw, expected", [("true", True), ("1", True), ("false", False), ("0", False)])
def test_bool_conversion(raw, expected):
    assert convert_env_value(bool, raw) is expected


def test_invalid_bool():
    with pytest.raises(ValueError, match="invalid boolean value: yes"):
        convert_env_value(bool, "yes")


def test_int_and_float_conversion():
    assert convert_env_value(int, "-42") == -42
    assert convert_env_value(float, "2.5") == 2.5
    assert convert_env_value(str, " raw ") == " raw "


@pytest.mark.parametrize("raw", ["12a", "", " 5", "1_000", "99999999999999999999"])
def test_invalid_int(raw):
    with pytest.raises(ValueError):
        convert_env_value(int, raw)


def test_build_env_name():
    assert build_env_name("", "max-open") == "MAX_OPEN"
    assert build_env_name("DATABASE", "host") == "DATABASE_HOST"


def test_load_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(VALID_YAML)
    config = load_config(path, ServiceConfig)
    assert config.base.environment == "development"
    assert config.base.debug is True
    assert config.database.host == "localhost"
    assert config.database.port == 5432
    assert config.database.password == ""


def test_load_config_applies_env_overrides(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(VALID_YAML)
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setenv("DATABASE_PORT", "6543")
    monkeypatch.setenv("DEBUG", "0")
    config = load_config(path, ServiceConfig)
    assert config.base.environment == "production"
    assert config.database.port == 6543
    assert config.base.debug is False


def test_load_config_bad_env_override(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(VALID_YAML)
    monkeypatch.setenv("DATABASE_PORT", "abc")
    with pytest.raises(ConfigError, match="failed to apply environment overrides"):
        load_config(path, ServiceConfig)


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="failed to read config file"):
        load_config(tmp_path / "absent.yaml", ServiceConfig)


def test_load_config_parse_error(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(VALID_YAML.replace("port: 5432", "port: abc"))
    with pytest.raises(ConfigError, match="failed to parse config"):
        load_config(path, ServiceConfig)


def test_load_config_validation_error(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(VALID_YAML.replace("port: 5432", "port: 70000"))
    with pytest.raises(ConfigValidationError) as info:
        load_config(path, ServiceConfig)
    assert str(info.value).startswith("config validation failed")
    assert any("'port'" in err and "'max'" in err for err in info.value.errors)


def test_load_with_environment_prefers_env_file(tmp_path):
    base = tmp_path / "config.yaml"
    base.write_text(VALID_YAML)
    (tmp_path / "config.staging.yaml").write_text(VALID_YAML.replace("development", "staging"))
    assert load_config_with_environment(base, "staging", ServiceConfig).base.environment == "staging"
    assert load_config_with_environment(base, "production", ServiceConfig).base.environment == "development"


def test_validate_required_failures():
    with pytest.raises(ConfigValidationError) as info:
        validate_config(GRPCConfig())
    assert any("'port'" in err and "'required'" in err for err in info.value.errors)
    assert any("'timeout'" in err and "'min'" in err for err in info.value.errors)


def test_validate_oneof():
    with pytest.raises(ConfigValidationError, match="oneof"):
        validate_config(BaseConfig(environment="qa", log_level="info"))
    validate_config(BaseConfig(environment="staging", log_level="warn"))
    assert BaseConfig(environment="staging", log_level="warn").log_level == "warn"


def test_validate_string_min_length():
    with pytest.raises(ConfigValidationError) as info:
        validate_config(
            SecurityConfig(
                jwt_secret="secret",
                jwt_expiration="15m",
                refresh_expiration="24h",
                rate_limit_rps=10,
                rate_limit_burst=20,
                password_min_length=8,
            )
        )
    assert len(info.value.errors) == 1
    assert "jwt_secret" in info.value.errors[0]


def test_validate_redis_and_monitoring():
    validate_config(RedisConfig(addr="localhost:6379", pool_size=5))
    with pytest.raises(ConfigValidationError, match="prometheus_port"):
        validate_config(MonitoringConfig(prometheus_port=0))
    with pytest.raises(ConfigValidationError, match="pool_size"):
        validate_config(RedisConfig(addr="localhost:6379"))


def test_validate_non_dataclass():
    with pytest.raises(ConfigValidationError):
        validate_config({"port": 1})


def test_apply_overrides_rejects_non_dataclass():
    with pytest.raises(ConfigError, match="dataclass"):
        apply_environment_overrides(42)


def test_get_environment(monkeypatch):
    assert get_environment() == "development"
    monkeypatch.setenv("ENV", "staging")
    assert get_environment() == "staging"
    monkeypatch.setenv("ENVIRONMENT", "production")
    assert get_environment() == "production"