from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import yaml

from .errors import ConfigError

CONFIG_ENV_VAR = "SIEGE_CONFIG"

LOG_FORMATS = ("text", "json")

# Flag spellings accepted in config files next to the field names
_ALIASES: Dict[str, str] = {
    "node.addr": "node_addr",
    "siege.addr": "listen_addr",
    "cannon": "verifier_path",
    "verifier.timeout": "verifier_timeout",
    "upstream.timeout": "upstream_timeout",
    "log.level": "log_level",
    "log.format": "log_format",
    "log.color": "log_color",
}


@dataclass(slots=True, frozen=True)
class SiegeConfig:
    """Static settings, resolved once at startup and shared by every request."""

    node_addr: str = "http://127.0.0.1:8545"
    listen_addr: str = "http://127.0.0.1:9000"
    verifier_path: str = "../cannon"
    verifier_timeout: Optional[float] = None
    upstream_timeout: float = 60.0
    log_level: str = "info"
    log_format: str = "text"
    log_color: bool = False

    def __post_init__(self) -> None:
        for name in ("node_addr", "listen_addr"):
            _check_url(name, getattr(self, name))
        if not self.verifier_path:
            raise ConfigError("verifier_path must not be empty")
        if self.log_format not in LOG_FORMATS:
            raise ConfigError(f"log_format must be one of {', '.join(LOG_FORMATS)}, got {self.log_format!r}")
        if self.upstream_timeout <= 0:
            raise ConfigError("upstream_timeout must be positive")
        if self.verifier_timeout is not None and self.verifier_timeout <= 0:
            raise ConfigError("verifier_timeout must be positive")

    @property
    def listen_host(self) -> str:
        return urlparse(self.listen_addr).hostname or "127.0.0.1"

    @property
    def listen_port(self) -> int:
        parsed = urlparse(self.listen_addr)
        try:
            port = parsed.port
        except ValueError as exc:
            raise ConfigError(f"invalid port in listen_addr: {exc}") from exc
        return port or (443 if parsed.scheme == "https" else 80)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "SiegeConfig":
        known = {f.name for f in fields(SiegeConfig)}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                raise ConfigError(f"unknown config key {key!r}")
            if value is not None:
                values[name] = value
        try:
            return SiegeConfig(**_coerce(values))
        except (TypeError, ValueError) as exc:
            raise ConfigError(str(exc)) from exc

    @staticmethod
    def from_env(environ: Optional[Dict[str, str]] = None) -> "SiegeConfig":
        """
        Load the configuration from the ``SIEGE_CONFIG`` environment variable.

        The variable holds a JSON object; an unset variable yields the defaults.
        """
        environ = os.environ if environ is None else environ
        raw = environ.get(CONFIG_ENV_VAR, "").strip()
        if not raw:
            return SiegeConfig()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"invalid JSON in {CONFIG_ENV_VAR}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{CONFIG_ENV_VAR} must hold a JSON object")
        return SiegeConfig.from_dict(data)

    @staticmethod
    def from_yaml(path: str | Path) -> "SiegeConfig":
        try:
            with Path(path).open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"could not load config file {path}: {exc}") from exc
        if data is None:
            return SiegeConfig()
        if not isinstance(data, dict):
            raise ConfigError(f"config file {path} must hold a mapping")
        return SiegeConfig.from_dict(data)

    def merged(self, overrides: Dict[str, Any]) -> "SiegeConfig":
        """
        Return a copy with every non-None override applied.
        """
        values = {_ALIASES.get(k, k): v for k, v in overrides.items() if v is not None}
        try:
            return replace(self, **_coerce(values))
        except (TypeError, ValueError) as exc:
            raise ConfigError(str(exc)) from exc

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))


def _check_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ConfigError(f"{name} must be an http(s) URL with a host, got {value!r}")


def _coerce(values: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(values)
    for name in ("verifier_timeout", "upstream_timeout"):
        if name in out:
            out[name] = float(out[name])
    if "log_color" in out and isinstance(out["log_color"], str):
        out["log_color"] = out["log_color"].strip().lower() in ("1", "true", "yes", "on")
    if "log_level" in out:
        out["log_level"] = str(out["log_level"]).lower()
    if "log_format" in out:
        out["log_format"] = str(out["log_format"]).lower()
    return out
