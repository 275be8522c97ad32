"""Configuration parsing for bbbmetrics.

Parses .bbbmetrics/config.toml files for the BigBlueButton connection, the
daemon poll loop and the output format.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bbbmetrics.emitter import OUTPUT_FORMATS

DEFAULT_URL = "http://localhost:8090"
DEFAULT_PATH_PREFIX = "/bigbluebutton"
DEFAULT_TIMEOUT = 5

SECRET_KEY_ENV = "BBBMETRICS_SECRET_KEY"

SAMPLE_CONFIG = """\
[bigbluebutton]
## Required BigBlueButton server url
url = "http://localhost:8090"

## BigBlueButton path prefix. Default is "/bigbluebutton"
# path_prefix = "/bigbluebutton"

## Required BigBlueButton secret key (or set BBBMETRICS_SECRET_KEY)
secret_key = ""

## Gather metrics by metadata
## Each metadata value found under one of these names gets its own measurement
# gather_by_metadata = []

## Optional HTTP Basic Auth Credentials
# username = "username"
# password = "pa$$word"

## Request timeout in seconds
# timeout = 5

## Optional HTTP Proxy support
# http_proxy_url = ""

## Optional TLS Config
# tls_ca = "/etc/bbbmetrics/ca.pem"
# tls_cert = "/etc/bbbmetrics/cert.pem"
# tls_key = "/etc/bbbmetrics/key.pem"

## Use TLS but skip chain & host verification
# insecure_skip_verify = false

[daemon]
## Seconds between two poll cycles
# interval = 10

## Fetch meetings, recordings and health status concurrently and run the
## meeting and recording aggregation passes on separate threads
# parallel_fetch = false

[output]
## influx (line protocol) or json
# format = "influx"

## Output file. Empty means stdout for "gather" and
## .bbbmetrics/metrics.out for the daemon
# path = ""
"""


def _optional_str(section: str, data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValueError(f"[{section}] '{key}' must be a string")
    return value


@dataclass
class BigBlueButtonConfig:
    """Connection settings for the BigBlueButton API."""

    url: str = DEFAULT_URL
    path_prefix: str = DEFAULT_PATH_PREFIX
    secret_key: str = ""
    gather_by_metadata: list[str] = field(default_factory=list)
    username: str | None = None
    password: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    http_proxy_url: str | None = None
    tls_ca: str | None = None
    tls_cert: str | None = None
    tls_key: str | None = None
    insecure_skip_verify: bool = False

    def validate(self) -> None:
        """Check the settings needed to talk to the server.

        Raises:
            ValueError: If the secret key is missing or TLS settings are
                incomplete.
        """
        if not self.secret_key:
            raise ValueError("BigBlueButton secret key is required")
        if self.tls_key and not self.tls_cert:
            raise ValueError("[bigbluebutton] 'tls_key' requires 'tls_cert'")

    @property
    def should_gather_by_metadata(self) -> bool:
        return len(self.gather_by_metadata) > 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BigBlueButtonConfig:
        """Create a BigBlueButtonConfig from the [bigbluebutton] section.

        The secret key falls back to the BBBMETRICS_SECRET_KEY environment
        variable. A missing secret is not an error here, see ``validate``.

        Raises:
            ValueError: If a value has the wrong type.
        """
        metadata = data.get("gather_by_metadata", [])
        if not isinstance(metadata, list) or not all(
            isinstance(name, str) for name in metadata
        ):
            raise ValueError(
                "[bigbluebutton] 'gather_by_metadata' must be a list of strings"
            )

        timeout = data.get("timeout", DEFAULT_TIMEOUT)
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError("[bigbluebutton] 'timeout' must be a positive number")

        insecure = data.get("insecure_skip_verify", False)
        if not isinstance(insecure, bool):
            raise ValueError("[bigbluebutton] 'insecure_skip_verify' must be a boolean")

        secret_key = _optional_str("bigbluebutton", data, "secret_key")
        if secret_key is None:
            secret_key = os.environ.get(SECRET_KEY_ENV, "")

        return cls(
            url=_optional_str("bigbluebutton", data, "url") or DEFAULT_URL,
            path_prefix=_optional_str("bigbluebutton", data, "path_prefix")
            or DEFAULT_PATH_PREFIX,
            secret_key=secret_key,
            gather_by_metadata=list(metadata),
            username=_optional_str("bigbluebutton", data, "username"),
            password=_optional_str("bigbluebutton", data, "password"),
            timeout=timeout,
            http_proxy_url=_optional_str("bigbluebutton", data, "http_proxy_url"),
            tls_ca=_optional_str("bigbluebutton", data, "tls_ca"),
            tls_cert=_optional_str("bigbluebutton", data, "tls_cert"),
            tls_key=_optional_str("bigbluebutton", data, "tls_key"),
            insecure_skip_verify=insecure,
        )


@dataclass
class DaemonConfig:
    """Configuration for the daemon."""

    interval: int = 10  # seconds between poll cycles
    parallel_fetch: bool = False


@dataclass
class OutputConfig:
    """Where and how measurements are written."""

    format: str = "influx"
    path: str | None = None


@dataclass
class Config:
    """Main configuration container."""

    bigbluebutton: BigBlueButtonConfig = field(default_factory=BigBlueButtonConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    config_path: Path | None = None

    @classmethod
    def load(cls, path: Path | None = None) -> Config:
        """Load configuration from a file.

        Args:
            path: Path to config file. If None, searches for .bbbmetrics/config.toml
                  in current directory and parents.

        Returns:
            Loaded configuration.

        Raises:
            FileNotFoundError: If no config file found.
            ValueError: If config file is invalid.
        """
        if path is None:
            path = cls._find_config()

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "rb") as f:
            try:
                data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ValueError(f"Invalid TOML in {path}: {e}") from e

        return cls._from_dict(data, path)

    @classmethod
    def load_or_default(cls, path: Path | None = None) -> Config:
        """Load configuration or return default if not found."""
        try:
            return cls.load(path)
        except FileNotFoundError:
            return cls(bigbluebutton=BigBlueButtonConfig.from_dict({}))

    @classmethod
    def _find_config(cls) -> Path:
        """Find config file by searching current directory and parents."""
        cwd = Path.cwd()
        for parent in [cwd, *cwd.parents]:
            config_path = parent / ".bbbmetrics" / "config.toml"
            if config_path.exists():
                return config_path

        # Return expected path even if it doesn't exist
        return cwd / ".bbbmetrics" / "config.toml"

    @classmethod
    def _from_dict(cls, data: dict[str, Any], path: Path | None) -> Config:
        """Create a Config from a dictionary."""
        bigbluebutton = BigBlueButtonConfig.from_dict(data.get("bigbluebutton", {}))

        daemon_data = data.get("daemon", {})
        interval = daemon_data.get("interval", 10)
        if isinstance(interval, bool) or not isinstance(interval, int) or interval <= 0:
            raise ValueError("[daemon] 'interval' must be a positive integer")
        parallel_fetch = daemon_data.get("parallel_fetch", False)
        if not isinstance(parallel_fetch, bool):
            raise ValueError("[daemon] 'parallel_fetch' must be a boolean")
        daemon = DaemonConfig(interval=interval, parallel_fetch=parallel_fetch)

        output_data = data.get("output", {})
        output_format = output_data.get("format", "influx")
        if output_format not in OUTPUT_FORMATS:
            raise ValueError(
                f"[output] invalid format '{output_format}'. "
                f"Valid formats are: {', '.join(OUTPUT_FORMATS)}"
            )
        output = OutputConfig(
            format=output_format,
            path=_optional_str("output", output_data, "path"),
        )

        return cls(
            bigbluebutton=bigbluebutton,
            daemon=daemon,
            output=output,
            config_path=path,
        )

    def get_value(self, key_path: str) -> Any:
        """Get a configuration value by dot-separated path.

        Args:
            key_path: Dot-separated path to value (e.g. "daemon.interval").

        Returns:
            The configuration value.

        Raises:
            KeyError: If path is invalid.
        """
        parts = key_path.split(".")
        current = self
        for part in parts:
            if hasattr(current, part):
                current = getattr(current, part)
            elif isinstance(current, dict) and part in current:
                current = current[part]
            else:
                raise KeyError(f"Invalid config path: {key_path}")
        return current
