# draftkeeper/config.py
# Description: Configuration management for draftkeeper.
#
# Imports
import base64
import binascii
import copy
import os
import sys
if sys.version_info < (3, 11):
    import tomli as tomllib
else:
    import tomllib
from pathlib import Path
from typing import Any, Dict, Optional
#
# Third-Party Imports
import toml
from loguru import logger
#
# Local Imports
from .exceptions import ConfigurationError
from .AutoSave.manager import AutoSaveConfig
from .Storage.backends import FileStore, MemoryStore
from .Storage.storage_adapter import StorageAdapter, StorageOptions
from .Utils.payload_encryption import PayloadEncryption
#
#######################################################################################################################
#
# Functions:

# --- Path to the user's configuration file ---
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "draftkeeper" / "config.toml"
BASE_DATA_DIR = Path.home() / ".local" / "share" / "draftkeeper"
CONFIG_PATH_ENV = "DRAFTKEEPER_CONFIG"

CONFIG_TOML_CONTENT = """
# Configuration for draftkeeper
# This file is created on first run. Edit values here to override the defaults.

[autosave]
debounce_ms = 1000                 # Quiet period before a change is written
max_entries = 50                   # Oldest drafts (by last write) are evicted past this count
storage_key = "draftkeeper"        # Namespace prefix for stored drafts
enable_recovery = true             # Offer to restore drafts when a view is opened
persistent = true                  # true: drafts survive restarts (file store); false: memory only
compress = true                    # Compress drafts larger than 1 KB
encrypt = false                    # Encrypt drafts at rest (needs a passphrase, see [encryption])
ttl_ms = 604800000                 # Drafts expire after 7 days; 0 disables expiry
max_storage_mb = 10                # Total draft storage budget
storage_file = "~/.local/share/draftkeeper/autosave.json"

[encryption]
passphrase_env = "DRAFTKEEPER_PASSPHRASE"   # Environment variable holding the passphrase
salt = ""                                   # Base64 salt, generated on first use

[logging]
log_level = "INFO"
log_file = ""                      # Empty disables the file sink
"""

try:
    DEFAULT_CONFIG_FROM_TOML: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)
except tomllib.TOMLDecodeError as e:
    logger.critical(f"FATAL: Could not parse internal CONFIG_TOML_CONTENT: {e}")
    DEFAULT_CONFIG_FROM_TOML = {}


def get_config_path() -> Path:
    """Config file location; DRAFTKEEPER_CONFIG overrides the default."""
    override = os.getenv(CONFIG_PATH_ENV)
    return Path(override).expanduser() if override else DEFAULT_CONFIG_PATH


def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges update into base."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def _get_typed_value(data_dict: Dict, key: str, default: Any, target_type: type = str) -> Any:
    """Helper to get value from dict and cast to type, with logging for type errors."""
    value = data_dict.get(key, default)
    if value is default and default is not None:
        return value
    if value is None:
        return None

    try:
        if target_type == bool:
            if isinstance(value, bool):
                return value
            return str(value).lower() in ['true', '1', 't', 'y', 'yes']
        if target_type == Path:
            return Path(value).expanduser() if value else default
        return target_type(value)
    except (ValueError, TypeError) as e:
        logger.warning(f"Config key '{key}' has value '{value}' which could not be converted to {target_type}. Using default: '{default}'. Error: {e}")
        return default


# --- Primary Configuration Loading Logic ---
_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def load_config(force_reload: bool = False) -> Dict[str, Any]:
    """
    Loads settings from the user's config.toml on top of the built-in defaults.
    If the file doesn't exist, it's created with the contents of CONFIG_TOML_CONTENT.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload:
        return _CONFIG_CACHE

    config_path = get_config_path()
    loaded_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)

    if not config_path.exists():
        logger.info(f"Config file not found at {config_path}. Creating it with default values.")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, "w", encoding="utf-8") as f:
                f.write(CONFIG_TOML_CONTENT)
            logger.info(f"Created default config file at {config_path}")
        except OSError as e:
            logger.error(f"Could not create default config file {config_path}: {e}. Using internal defaults.")
    else:
        logger.info(f"Loading config from: {config_path}")
        try:
            with open(config_path, "rb") as f:
                user_config_from_file = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config_from_file)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {config_path}: {e}. Using internal defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {config_path}: {e}. Using internal defaults.")

    _CONFIG_CACHE = loaded_config
    logger.debug(f"load_config returning config with top-level keys: {list(loaded_config.keys())}")
    return _CONFIG_CACHE


def save_setting_to_config(section: str, key: str, value: Any) -> bool:
    """
    Saves a specific setting to the user's TOML configuration file.

    Reads the current file, sets `key` inside `section` (dotted sections are
    nested tables), writes the file back and reloads the cache.

    Returns:
        True if the setting was saved successfully, False otherwise.
    """
    global _CONFIG_CACHE
    config_path = get_config_path()
    logger.info(f"Attempting to save setting: [{section}].{key}")

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Could not create config directory {config_path.parent}: {e}")
        return False

    config_data: Dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, "rb") as f:
                config_data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Corrupted config file at {config_path}. Cannot save. Please fix or delete it. Error: {e}")
            return False
        except OSError as e:
            logger.error(f"Unexpected error reading {config_path}: {e}")
            return False

    current_level = config_data
    try:
        for part in section.split('.'):
            current_level = current_level.setdefault(part, {})
        current_level[key] = value
    except (TypeError, AttributeError):
        logger.error(
            f"Configuration structure conflict. Could not set '{key}' in section '{section}' "
            f"because a part of the path is not a table."
        )
        return False

    try:
        with open(config_path, "w", encoding="utf-8") as f:
            toml.dump(config_data, f)
        logger.success(f"Successfully saved setting to {config_path}")
        _CONFIG_CACHE = None
        load_config(force_reload=True)
        return True
    except OSError as e:
        logger.error(f"Failed to write updated config to {config_path}: {e}")
        return False


def get_setting(section: str, key: str, default: Any = None) -> Any:
    """Helper to get a specific setting from the loaded configuration."""
    config = load_config()
    section_data = config.get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default


def get_data_dir() -> Path:
    """Get the data directory, creating it if necessary."""
    BASE_DATA_DIR.mkdir(parents=True, exist_ok=True)
    return BASE_DATA_DIR


# --- Auto-save wiring ---

def get_autosave_config(config: Optional[Dict[str, Any]] = None) -> AutoSaveConfig:
    """Build an AutoSaveConfig from the [autosave] section."""
    section = (config if config is not None else load_config()).get("autosave", {})
    ttl_ms = _get_typed_value(section, "ttl_ms", 0, int)
    return AutoSaveConfig(
        debounce_ms=_get_typed_value(section, "debounce_ms", 1000, int),
        max_entries=_get_typed_value(section, "max_entries", 50, int),
        storage_key=_get_typed_value(section, "storage_key", "draftkeeper", str),
        enable_recovery=_get_typed_value(section, "enable_recovery", True, bool),
        storage_options=StorageOptions(
            persistent=_get_typed_value(section, "persistent", True, bool),
            compress=_get_typed_value(section, "compress", True, bool),
            encrypt=_get_typed_value(section, "encrypt", False, bool),
            ttl_ms=ttl_ms if ttl_ms and ttl_ms > 0 else None,
        ),
    )


def _load_or_create_salt(encryption_section: Dict[str, Any]) -> bytes:
    salt_b64 = encryption_section.get("salt") or ""
    if salt_b64:
        try:
            return base64.b64decode(salt_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ConfigurationError(f"[encryption].salt is not valid base64: {e}") from e

    salt = PayloadEncryption.generate_salt()
    # Drafts written with this salt are unreadable if it is lost, so persist it
    if not save_setting_to_config("encryption", "salt", base64.b64encode(salt).decode("ascii")):
        logger.warning("Could not persist the generated encryption salt; encrypted drafts will not survive a restart")
    return salt


def create_encryption(config: Optional[Dict[str, Any]] = None) -> PayloadEncryption:
    """
    Build the payload encryption from [encryption].

    Raises:
        ConfigurationError: If the passphrase environment variable is not set
    """
    section = (config if config is not None else load_config()).get("encryption", {})
    env_name = _get_typed_value(section, "passphrase_env", "DRAFTKEEPER_PASSPHRASE", str)
    passphrase = os.getenv(env_name)
    if not passphrase:
        raise ConfigurationError(f"Draft encryption is enabled but ${env_name} is not set")
    return PayloadEncryption(passphrase, _load_or_create_salt(section))


def create_storage_adapter(
    autosave_config: Optional[AutoSaveConfig] = None,
    config: Optional[Dict[str, Any]] = None,
) -> StorageAdapter:
    """Build the storage adapter described by the [autosave] and [encryption] sections."""
    config = config if config is not None else load_config()
    autosave_config = autosave_config or get_autosave_config(config)
    section = config.get("autosave", {})

    storage_file = _get_typed_value(section, "storage_file", BASE_DATA_DIR / "autosave.json", Path)
    max_storage_mb = _get_typed_value(section, "max_storage_mb", 10, float)
    encryption = create_encryption(config) if autosave_config.storage_options.encrypt else None

    return StorageAdapter(
        session_store=MemoryStore(),
        persistent_store=FileStore(storage_file),
        prefix=f"{autosave_config.storage_key}:",
        max_storage_bytes=int(max_storage_mb * 1024 * 1024),
        encryption=encryption,
    )


def get_log_file_path(config: Optional[Dict[str, Any]] = None) -> Optional[Path]:
    section = (config if config is not None else load_config()).get("logging", {})
    return _get_typed_value(section, "log_file", None, Path) or None

#
# End of config.py
########################################################################################################################
