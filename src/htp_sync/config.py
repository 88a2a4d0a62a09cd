"""
Configuration for htp-sync.

Settings come from an optional TOML file and command-line overrides:

    # /etc/htp-sync/config.toml
    [sync]
    hosts = ["www.example.com", "https://www.example.org"]
    mode = "frequency"
    precision = 5
    min_sleep = 1800
    max_sleep = 115200
    drift_file = "/var/lib/htp-sync/drift"

Everything is validated before any network activity.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import toml

from .interfaces.sync_result import CorrectionMode, HostTarget
from .probe.targets import parse_proxy, parse_target, proxy_from_environment
from .timing.bisection import MAX_PRECISION, MIN_PRECISION

logger = logging.getLogger(__name__)

MAX_HTTP_HOSTS = 16
DEFAULT_TIME_LIMIT = 31536000     # 1 year
DEFAULT_MIN_SLEEP = 1800          # 30 minutes
DEFAULT_MAX_SLEEP = 115200        # 32 hours
DEFAULT_PID_FILE = "/var/run/htp-sync.pid"


class ConfigError(ValueError):
    """Invalid configuration, detected before any network activity."""


@dataclass
class SyncConfig:
    hosts: List[str] = field(default_factory=list)
    ip_version: int = 0
    http_version: str = "1"
    precision: int = 4
    mode: CorrectionMode = CorrectionMode.REPORT
    verify_cert: bool = True
    proxy: Optional[str] = None
    use_proxy_env: bool = True
    min_sleep: int = DEFAULT_MIN_SLEEP
    max_sleep: int = DEFAULT_MAX_SLEEP
    time_limit: Optional[float] = DEFAULT_TIME_LIMIT
    drift_file: Optional[str] = None
    pid_file: str = DEFAULT_PID_FILE
    daemon: bool = False
    foreground: bool = False
    user: Optional[str] = None
    group: Optional[str] = None
    timeout: Optional[float] = None
    debug: int = 0
    syslog: bool = False

    # Filled in by validate()
    resolved_proxy: Optional[Tuple[str, int]] = field(default=None, repr=False)

    @property
    def continuous(self) -> bool:
        """Daemon or foreground: poll forever."""
        return self.daemon or self.foreground

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'SyncConfig':
        """Build a config from a (TOML) mapping; unknown keys are an error."""
        known = {f.name for f in fields(cls)} - {'resolved_proxy'}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        config = cls(**dict(data))
        if isinstance(config.mode, str):
            config.mode = cls._parse_mode(config.mode)
        if config.time_limit is False:
            config.time_limit = None
        return config

    @staticmethod
    def _parse_mode(value: str) -> CorrectionMode:
        try:
            return CorrectionMode(value)
        except ValueError:
            choices = ', '.join(m.value for m in CorrectionMode)
            raise ConfigError(f"Invalid mode {value!r} (choose from {choices})") from None

    def targets(self) -> List[HostTarget]:
        """Parse the host list; called once per poll cycle."""
        return [parse_target(host) for host in self.hosts]

    def validate(self, environ: Optional[Mapping[str, str]] = None) -> 'SyncConfig':
        """
        Check every setting and resolve the proxy.

        Raises:
            ConfigError: on the first invalid setting
        """
        if not self.hosts:
            raise ConfigError("No servers specified")
        if len(self.hosts) > MAX_HTTP_HOSTS:
            raise ConfigError(f"Too many servers ({len(self.hosts)}, maximum {MAX_HTTP_HOSTS})")
        try:
            self.targets()
        except ValueError as e:
            raise ConfigError(str(e)) from e

        if not isinstance(self.precision, int) or not MIN_PRECISION <= self.precision <= MAX_PRECISION:
            raise ConfigError(f"Invalid precision {self.precision} (must be {MIN_PRECISION}..{MAX_PRECISION})")
        if self.ip_version not in (0, 4, 6):
            raise ConfigError(f"Invalid IP version {self.ip_version}")
        if str(self.http_version) not in ("0", "1"):
            raise ConfigError(f"Invalid HTTP version 1.{self.http_version}")
        self.http_version = str(self.http_version)
        if isinstance(self.mode, str):
            self.mode = self._parse_mode(self.mode)

        if self.min_sleep <= 0 or self.max_sleep <= 0:
            raise ConfigError("Invalid sleep time")
        if self.min_sleep > self.max_sleep:
            raise ConfigError(f"min_sleep ({self.min_sleep}) exceeds max_sleep ({self.max_sleep})")
        if self.time_limit is not None and self.time_limit <= 0:
            raise ConfigError(f"Invalid time limit {self.time_limit}")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError(f"Invalid timeout {self.timeout}")

        try:
            if self.proxy:
                self.resolved_proxy = parse_proxy(self.proxy)
            elif self.use_proxy_env:
                self.resolved_proxy = proxy_from_environment(os.environ if environ is None else environ)
        except ValueError as e:
            raise ConfigError(str(e)) from e

        return self


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load settings from a TOML file ([sync] table or top level)."""
    if config_path is None:
        return {}
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")
    try:
        with open(path, 'r') as f:
            data = toml.load(f)
    except toml.TomlDecodeError as e:
        raise ConfigError(f"{config_path}: {e}") from e
    return dict(data.get('sync', data))
