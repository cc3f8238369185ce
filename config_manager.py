"""
Configuration Manager

Persistent JSON configuration for dredge: the registry to talk to and the
client settings used by every command.
"""

import json
import os
import platform
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

from debug_logger import ContextLogger, LOG_LEVELS
from registry_errors import ConfigError

logger = ContextLogger(__name__)

DEFAULT_REGISTRY_URL = "https://localhost:5000"
CONFIG_VERSION = "1.0"


@dataclass
class RegistryConfig:
    """Settings for one invocation, passed explicitly into the client"""
    registry_url: str = DEFAULT_REGISTRY_URL
    log_level: str = "info"
    page_size: Optional[int] = None
    max_pages: Optional[int] = 1000
    timeout: float = 30.0
    verify_tls: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistryConfig":
        """Build a config from a JSON object, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        config = cls(**{k: v for k, v in data.items() if k in known})
        config.validate()
        return config

    def validate(self) -> None:
        if not isinstance(self.registry_url, str) or not self.registry_url:
            raise ConfigError("registry_url must be a non-empty string")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"Unknown log_level: {self.log_level!r}")
        for name in ("page_size", "max_pages"):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value < 1):
                raise ConfigError(f"{name} must be a positive integer or null")
        if not isinstance(self.timeout, (int, float)) or isinstance(self.timeout, bool) or self.timeout <= 0:
            raise ConfigError("timeout must be a positive number")
        if not isinstance(self.verify_tls, bool):
            raise ConfigError("verify_tls must be true or false")


class ConfigManager:
    """Manages persistent configuration storage for dredge"""

    def __init__(self, app_name: str = "dredge", config_file: Optional[str] = None):
        self.app_name = app_name
        self.explicit = config_file is not None
        if config_file:
            self.config_file = Path(config_file).expanduser()
            self.config_dir = self.config_file.parent
        else:
            self.config_dir = self._get_config_directory()
            self.config_file = self.config_dir / "config.json"
        self.backup_file = self.config_file.with_name(self.config_file.stem + ".backup.json")

    def _get_config_directory(self) -> Path:
        """Get platform-appropriate configuration directory"""
        system = platform.system().lower()

        if system == "linux":
            # Linux: $XDG_CONFIG_HOME or ~/.config
            config_base = Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config")
        elif system == "darwin":
            config_base = Path.home() / "Library" / "Application Support"
        elif system == "windows":
            config_base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        else:
            config_base = Path.home() / ".config"

        return config_base / self.app_name

    def _ensure_config_directory(self) -> None:
        """Create configuration directory if it doesn't exist"""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            if not self.explicit:
                os.chmod(self.config_dir, 0o700)
            logger.debug("Config directory ready", config_dir=self.config_dir)
        except OSError as e:
            raise ConfigError(f"Failed to create config directory {self.config_dir}: {e}") from e

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration structure"""
        config = asdict(RegistryConfig())
        config["version"] = CONFIG_VERSION
        config["last_updated"] = datetime.now().isoformat()
        return config

    def _backup_existing_config(self) -> None:
        """Create backup of existing config before saving new one"""
        if self.config_file.exists():
            try:
                with open(self.config_file, 'r') as src, open(self.backup_file, 'w') as dst:
                    dst.write(src.read())
                logger.debug("Config backed up", backup_file=self.backup_file)
            except OSError as e:
                logger.warning("Failed to backup config", error=e)

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from file, return defaults if not found"""
        if not self.config_file.exists():
            if self.explicit:
                raise ConfigError(f"Config file not found: {self.config_file}")
            logger.info("No config file found, using defaults", config_file=self.config_file)
            return self._get_default_config()

        try:
            with open(self.config_file, 'r') as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            return self._reject(f"Config file corrupted (JSON error): {e}")
        except OSError as e:
            return self._reject(f"Failed to read config file {self.config_file}: {e}")

        if not isinstance(config, dict) or "registry_url" not in config:
            return self._reject(f"Config file format invalid: {self.config_file}")

        logger.debug("Config loaded", config_file=self.config_file)
        return config

    def _reject(self, message: str) -> Dict[str, Any]:
        """Fail on a broken explicit config, fall back to defaults otherwise"""
        if self.explicit:
            raise ConfigError(message)
        logger.warning(message + ", using defaults")
        return self._get_default_config()

    def save_config(self, config: Dict[str, Any]) -> None:
        """Save configuration to file"""
        self._ensure_config_directory()
        config["last_updated"] = datetime.now().isoformat()
        self._backup_existing_config()

        try:
            with open(self.config_file, 'w') as f:
                json.dump(config, f, indent=2, sort_keys=True)
            os.chmod(self.config_file, 0o600)
        except OSError as e:
            raise ConfigError(f"Failed to save config {self.config_file}: {e}") from e

        logger.info("Config saved", config_file=self.config_file)

    def ensure_config(self) -> bool:
        """Write the default config if none exists; True when a file was created"""
        if self.config_file.exists():
            return False
        self.save_config(self._get_default_config())
        return True

    def get_registry_config(self) -> RegistryConfig:
        """Load the file and turn it into a validated RegistryConfig"""
        config = self.load_config()
        try:
            return RegistryConfig.from_dict(config)
        except ConfigError as e:
            return RegistryConfig.from_dict(self._reject(f"Config file invalid ({e})"))

    def get_config_info(self) -> Dict[str, Any]:
        """Get information about the configuration system"""
        return {
            "config_dir": str(self.config_dir),
            "config_file": str(self.config_file),
            "config_exists": self.config_file.exists(),
            "backup_exists": self.backup_file.exists(),
        }
