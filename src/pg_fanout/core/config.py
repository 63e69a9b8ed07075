"""Configuration management for pg-fanout.

Handles the TOML config file, environment variables, endpoint groups
and connection-descriptor parsing.

Precedence order (highest to lowest):
1. CLI flags (--connect-timeout, --max-workers, --on-collision)
2. Environment variables (PG_FANOUT_CONNECT_TIMEOUT, PG_FANOUT_MAX_WORKERS,
   PG_FANOUT_ON_COLLISION)
3. Config file values
4. Built-in defaults
"""

from __future__ import annotations

import os
import tomllib
from collections import Counter
from enum import StrEnum
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, unquote, urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from pg_fanout.core.exceptions import ConfigError, InputError

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "pg-fanout" / "config.toml"

_DSN_SCHEMES = ("postgresql", "postgres")


class CollisionPolicy(StrEnum):
    """What to do when two endpoints map to the same archive entry name."""

    SUFFIX = "suffix"
    ERROR = "error"


_SETTING_DEFAULTS: dict[str, Any] = {
    "connect_timeout": 15,
    "max_workers": None,
    "on_collision": CollisionPolicy.SUFFIX,
    "application_name": "pg-fanout",
    "refresh_interval": 1 / 6,
    "status_interval": 0.1,
}

_ENV_VARS: dict[str, str] = {
    "PG_FANOUT_CONNECT_TIMEOUT": "connect_timeout",
    "PG_FANOUT_MAX_WORKERS": "max_workers",
    "PG_FANOUT_ON_COLLISION": "on_collision",
}

_INT_SETTINGS = {"connect_timeout", "max_workers"}


def parse_dsn(dsn: str) -> dict[str, Any]:
    """Supports postgresql:// and postgres:// schemes.

    Applies the libpq defaults for the fields that name the archive entry:
    host falls back to localhost, database to the user name, then postgres.
    Percent-encoded names are decoded.
    """
    parsed = urlparse(dsn)
    if parsed.scheme not in _DSN_SCHEMES:
        msg = (
            f"Invalid connection URL scheme: '{parsed.scheme}'. "
            "Expected 'postgresql' or 'postgres'"
        )
        raise InputError(msg)

    try:
        port = parsed.port
    except ValueError as e:
        raise InputError(f"Invalid port in connection URL: {e}") from e

    params = parse_qs(parsed.query)
    user = unquote(parsed.username) if parsed.username else None
    dbname = unquote(parsed.path.strip("/")) if parsed.path else ""
    # libpq accepts host as a query parameter; the first of a list wins.
    host = parsed.hostname or params.get("host", [""])[0].split(",")[0]
    return {
        "host": host or "localhost",
        "port": port or 5432,
        "dbname": dbname or user or "postgres",
        "user": user,
    }


def mask_password(dsn: str) -> str:
    """Replace the password in a connection URL with ``***``."""
    parsed = urlparse(dsn)
    if not parsed.password:
        return dsn
    userinfo, _, hostinfo = parsed.netloc.rpartition("@")
    user = userinfo.split(":", 1)[0]
    return parsed._replace(netloc=f"{user}:***@{hostinfo}").geturl()


class Endpoint(BaseModel):
    """One target database.

    Identity is the descriptor; ``canonical_name`` is only the archive key
    and two descriptors may share it.
    """

    model_config = ConfigDict(frozen=True)

    index: int
    dsn: str = Field(repr=False)
    host: str
    port: int = 5432
    dbname: str
    user: str | None = None
    entry_name: str = ""

    @model_validator(mode="before")
    @classmethod
    def default_entry_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("entry_name"):
            name = f"{data.get('host')}_{data.get('dbname')}.csv"
            data = {**data, "entry_name": name}
        return data

    @classmethod
    def from_dsn(cls, dsn: str, index: int = 0) -> Endpoint:
        return cls(index=index, dsn=dsn, **parse_dsn(dsn))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def canonical_name(self) -> str:
        return f"{self.host}_{self.dbname}"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def label(self) -> str:
        return mask_password(self.dsn)


class AppConfig(BaseModel):
    connect_timeout: int = 15
    max_workers: int | None = None
    on_collision: CollisionPolicy = CollisionPolicy.SUFFIX
    application_name: str = "pg-fanout"
    refresh_interval: float = 1 / 6
    status_interval: float = 0.1
    groups: dict[str, list[str]] = {}


class Settings(BaseModel):
    """Resolved run settings with the layer each value came from."""

    connect_timeout: int = 15
    max_workers: int | None = None
    on_collision: CollisionPolicy = CollisionPolicy.SUFFIX
    application_name: str = "pg-fanout"
    refresh_interval: float = 1 / 6
    status_interval: float = 0.1
    sources: dict[str, str] = {}

    @field_validator("connect_timeout")
    @classmethod
    def validate_connect_timeout(cls, v: int) -> int:
        if v < 1:
            msg = f"Invalid connect_timeout: {v}. Must be at least 1 second"
            raise ValueError(msg)
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            msg = f"Invalid max_workers: {v}. Must be at least 1"
            raise ValueError(msg)
        return v

    @field_validator("refresh_interval", "status_interval")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            msg = f"Invalid interval: {v}. Must be positive"
            raise ValueError(msg)
        return v


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration from TOML file.

    Returns default AppConfig if file doesn't exist.
    Raises ConfigError on malformed TOML or invalid config.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not config_path.exists():
        return AppConfig()

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        msg = f"Malformed TOML in {config_path}: {e}"
        raise ConfigError(msg) from e

    try:
        return AppConfig.model_validate(data)
    except Exception as e:
        msg = f"Invalid configuration in {config_path}: {e}"
        raise ConfigError(msg) from e


def resolve_settings(config: AppConfig, **cli_overrides: Any) -> Settings:
    """Resolve run settings using the precedence chain.

    CLI > env > config file > built-in defaults.
    """
    sources: dict[str, str] = {}
    resolved: dict[str, Any] = dict(_SETTING_DEFAULTS)
    for key in resolved:
        sources[key] = "default"

    for key in config.model_fields_set:
        if key in resolved:
            resolved[key] = getattr(config, key)
            sources[key] = "config"

    for env_var, field_name in _ENV_VARS.items():
        value: Any = os.environ.get(env_var)
        if value is None or value == "":
            continue
        if field_name in _INT_SETTINGS:
            try:
                value = int(value)
            except ValueError:
                msg = f"Invalid {env_var} value: '{value}'. Must be an integer"
                raise ConfigError(msg) from None
        resolved[field_name] = value
        sources[field_name] = f"env: {env_var}"

    for key, value in cli_overrides.items():
        if value is not None and key in resolved:
            resolved[key] = value
            sources[key] = f"cli: --{key.replace('_', '-')}"

    resolved["sources"] = sources
    try:
        return Settings(**resolved)
    except Exception as e:
        raise ConfigError(f"Invalid settings: {e}") from e


def resolve_endpoints(
    dsns: list[str],
    config: AppConfig | None = None,
    groups: list[str] | None = None,
) -> list[Endpoint]:
    """Build the ordered endpoint list from positional DSNs and named groups.

    Group members come first, in group order, followed by the explicit DSNs.
    """
    all_dsns: list[str] = []
    for group in groups or []:
        available = config.groups if config is not None else {}
        if group not in available:
            names = ", ".join(sorted(available)) if available else "none"
            msg = f"Unknown endpoint group: '{group}'. Available groups: {names}"
            raise ConfigError(msg)
        all_dsns.extend(available[group])
    all_dsns.extend(dsns)
    return [Endpoint.from_dsn(dsn, index=i) for i, dsn in enumerate(all_dsns)]


def apply_collision_policy(
    endpoints: list[Endpoint], policy: CollisionPolicy
) -> list[Endpoint]:
    """Give every endpoint a unique archive entry name, or reject duplicates.

    With ``suffix`` the first endpoint keeps ``<host>_<db>.csv`` and later
    ones become ``<host>_<db>_2.csv``, ``_3`` and so on.
    """
    counts = Counter(e.canonical_name for e in endpoints)
    duplicates = sorted(name for name, n in counts.items() if n > 1)
    if not duplicates:
        return endpoints

    if policy is CollisionPolicy.ERROR:
        msg = (
            "Several endpoints share an archive entry name: "
            f"{', '.join(duplicates)}. Use --on-collision suffix to keep all of them."
        )
        raise InputError(msg)

    taken = {e.entry_name for e in endpoints if counts[e.canonical_name] == 1}
    seen: Counter[str] = Counter()
    renamed: list[Endpoint] = []
    for endpoint in endpoints:
        seen[endpoint.canonical_name] += 1
        n = seen[endpoint.canonical_name]
        if n == 1:
            name = endpoint.entry_name
        else:
            name = f"{endpoint.canonical_name}_{n}.csv"
            while name in taken:
                n += 1
                name = f"{endpoint.canonical_name}_{n}.csv"
        taken.add(name)
        renamed.append(endpoint.model_copy(update={"entry_name": name}))
    return renamed
