import os
import sys
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from .connection import validate_config
from .errors import ConfigurationError
from .models import ConnectionConfig, HostProfile, Settings


def default_config_path() -> Path:
    r"""
    Returns the platform-appropriate default config path.

    Returns:
        Path: Default config path for the current platform
            - Linux/WSL/Termux: ~/.config/muxlink/config.yml
            - Windows: %APPDATA%\muxlink\config.yml
    """
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if not appdata:
            return Path.home() / "AppData" / "Roaming" / "muxlink" / "config.yml"
        return Path(appdata) / "muxlink" / "config.yml"
    else:
        config_home = os.environ.get("XDG_CONFIG_HOME")
        if config_home:
            return Path(config_home) / "muxlink" / "config.yml"
        return Path.home() / ".config" / "muxlink" / "config.yml"


def load_config(config_path: Optional[Path] = None) -> Settings:
    """
    Loads the configuration file.

    Args:
        config_path: Optional path to config file. If None, uses default platform path.

    Returns:
        Settings: Validated settings and host profiles

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigurationError: If the file is not valid YAML or fails validation
    """
    path = config_path if config_path else default_config_path()

    if not path.exists():
        error_msg = f"""Configuration file not found at: {path}

To get started, create a config file with at least one host:

Example config.yml:
---
connect_timeout: 30
hosts:
  - alias: "devbox"
    host: "devbox.example.com"
    username: "{os.environ.get('USER', 'username')}"
    auth_method: "key"
    key_path: "~/.ssh/id_ed25519"
"""
        raise FileNotFoundError(error_msg)

    with open(path, "r") as f:
        try:
            config_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Error parsing YAML file at {path}: {e}") from e

    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Invalid configuration in {path}: expected a mapping at the top level")

    try:
        return Settings.model_validate(config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e


def save_config(settings: Settings, config_path: Optional[Path] = None) -> None:
    """
    Saves settings to the configuration file using atomic writes.

    The atomic write process:
    1. Write to a temporary file (config.yml.tmp)
    2. Flush and fsync to ensure data is on disk
    3. Replace the original file with the temp file

    Args:
        settings: Settings to save
        config_path: Optional path to config file. If None, uses default platform path.

    Raises:
        OSError: If file operations fail
    """
    path = config_path if config_path else default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    config_data = settings.model_dump(exclude_none=True)
    tmp_path = path.parent / f"{path.name}.tmp"

    try:
        with open(tmp_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
            f.flush()
            os.fsync(f.fileno())

        # os.replace overwrites an existing target on both Windows and Unix
        tmp_path.replace(path)

    except (OSError, yaml.YAMLError) as e:
        if tmp_path.exists():
            tmp_path.unlink()
        raise OSError(f"Failed to save config to {path}: {e}") from e


def build_connection_config(
    profile: HostProfile,
    settings: Optional[Settings] = None,
    password: Optional[str] = None,
    passphrase: Optional[str] = None,
) -> ConnectionConfig:
    """Turn a host profile plus runtime secrets into a ConnectionConfig.

    Key-based profiles have their private key read from ``key_path``.

    Raises:
        ConfigurationError: If the key file is missing or the result is invalid
    """
    settings = settings or Settings()
    private_key = None

    if profile.auth_method == "key":
        if not profile.key_path:
            raise ConfigurationError(f"Host {profile.alias} uses key authentication but has no key_path")
        key_file = Path(profile.key_path).expanduser()
        try:
            private_key = key_file.read_text()
        except OSError as e:
            raise ConfigurationError(f"SSH key not found for {profile.alias}: {key_file} ({e})") from e

    return validate_config(
        {
            "host": profile.host,
            "port": profile.port,
            "username": profile.username,
            "auth_method": profile.auth_method,
            "password": password,
            "private_key": private_key,
            "passphrase": passphrase,
            "connect_timeout": settings.connect_timeout,
        }
    )
