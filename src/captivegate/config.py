"""Service configuration — XDG paths, env vars, defaults.

Read once at startup; components receive the resulting objects explicitly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _default_data_dir() -> Path:
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "captivegate"
    return Path.home() / ".local" / "share" / "captivegate"


def _default_config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "captivegate"
    return Path.home() / ".config" / "captivegate"


@dataclass
class GatewayConfig:
    """Process-level settings that are not part of the redirect policy."""

    data_dir: Path = field(default_factory=_default_data_dir)
    config_dir: Path = field(default_factory=_default_config_dir)
    policy_path: Path | None = None
    reaper_interval: float = 5.0
    uplink_poll_interval: float = 5.0
    probe_timeout: float = 2.0
    validation_timeout: float = 5.0
    rule_timeout: float = 5.0
    rule_retries: int = 3
    rule_backoff: float = 0.5
    dns_port: int = 53
    resolv_conf: Path = Path("/etc/resolv.conf")
    admin_host: str = "127.0.0.1"  # Never exposed to the LAN
    admin_port: int = 8471
    verbose: bool = False

    @property
    def db_path(self) -> Path:
        return self.data_dir / "captivegate.db"

    @property
    def submission_log_path(self) -> Path:
        return self.data_dir / "submissions.log"

    @classmethod
    def load(cls) -> GatewayConfig:
        """Load config from environment variables with XDG defaults."""
        config = cls()

        env_policy = os.environ.get("CAPTIVEGATE_POLICY")
        if env_policy:
            config.policy_path = Path(env_policy)
        else:
            candidate = config.config_dir / "policy.yaml"
            if candidate.is_file():
                config.policy_path = candidate

        env_interval = os.environ.get("CAPTIVEGATE_REAPER_INTERVAL")
        if env_interval:
            config.reaper_interval = float(env_interval)

        env_port = os.environ.get("CAPTIVEGATE_ADMIN_PORT")
        if env_port:
            config.admin_port = int(env_port)

        env_dns = os.environ.get("CAPTIVEGATE_DNS_PORT")
        if env_dns:
            config.dns_port = int(env_dns)

        return config
