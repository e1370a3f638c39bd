import logging
import tempfile
from pathlib import Path
from typing import Optional

import yaml

from gerritci_core.gerrit.errors import GerritError
from gerritci_core.gerrit.rest import GerritREST
from gerritci_core.gerrit.ssh import ssh_config

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: dict = {
    "ssh_host": None,  # None = ask the instance (/ssh_info)
    "ssh_port": None,  # None = advertised port, then ~/.ssh/config
    "ssh_user": None,  # None = ~/.ssh/config; also the account builds are verified as
    "workdir": None,  # None = $TMPDIR/gerrit-ci
    "max_workers": None,  # None = one build per CPU for live events
    "poll_workers": 1,
    "connect_delay": 5,
    "http_timeout": 30,
    # Defaults for `gerrit-ci checkout`
    "instance": None,
    "project": None,
    "branch": None,
}

PROGRAM_NAME = "gerrit-ci"


def default_workdir() -> Path:
    return Path(tempfile.gettempdir()) / PROGRAM_NAME


def load_config(config_path: str = ".gerrit-ci.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .gerrit-ci.yml in the current directory
      3. CLI argument overrides
    """
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    if not config.get("workdir"):
        config["workdir"] = str(default_workdir())

    return config


def resolve_connection(config: dict, rest: GerritREST) -> tuple[str, int, str]:
    """
    Work out the (host, port, user) to reach Gerrit's SSH daemon with.

    Explicit settings win. A missing host is taken from the instance's
    /ssh_info, along with its port unless one was given. Whatever is still
    missing comes from the ssh client configuration for that host.
    """
    host = config.get("ssh_host")
    port = config.get("ssh_port")
    user = config.get("ssh_user")

    if not host:
        host, advertised_port = rest.ssh_info()
        port = port or advertised_port
        logger.debug("Using advertised ssh daemon %s:%s", host, port)

    if not user:
        user = ssh_config(host, "user")
    if not port:
        port = ssh_config(host, "port")

    if not user:
        raise GerritError(f"Could not determine the ssh user for {host}; pass --ssh-user")
    try:
        port = int(port)
    except (TypeError, ValueError):
        raise GerritError(f"Invalid ssh port for {host}: {port!r}")

    return host, port, user
