#!/usr/bin/env python3
"""
Configuration management for Feed Notifier.

This module centralizes all configuration loading, validation, and management.
It handles environment variables, validation, and provides a clean interface
for accessing configuration values throughout the application.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any, List
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv

def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    The logger outputs to stdout with line buffering for real-time logging.
    All modules should use get_logger() to create module-specific loggers that inherit this configuration.
    """
    # Determine log level
    level_str = environ.get("LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "ERROR": ERROR
    }
    level = level_map.get(level_str, INFO)

    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"

    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True  # Force reconfiguration if already configured
    )

    # Ensure unbuffered output
    try:
        sys.stdout.reconfigure(line_buffering=True)
        sys.stderr.reconfigure(line_buffering=True)
    except AttributeError:
        # Captured streams (pytest, some supervisors) may not support reconfigure
        pass

    # Reduce Azure SDK verbosity unless explicitly overridden
    azure_level = level_map.get(environ.get("AZURE_LOG_LEVEL", "WARNING").upper(), WARNING)
    for name in ("azure", "azure.core", "azure.monitor"):
        getLogger(name).setLevel(azure_level)

    return getLogger("FeedNotifier")

def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Args:
        name: The logger name (e.g., "fetcher", "poller", "delivery")

    Returns:
        A logger instance named "FeedNotifier.{name}"
    """
    return getLogger(f"FeedNotifier.{name}")

# Create single global logger instance
logger = _setup_global_logger()

class Config:
    """Configuration manager for Feed Notifier.

    Configuration is loaded from multiple sources:
    1. Environment variables
    2. .env file (if present)
    3. YAML secrets file (if SECRETS_FILE environment variable is set)

    Subscriptions and destinations can additionally be declared in
    subscriptions.yaml, which the host syncs into the subscription store:
    ```yaml
    destinations:
      - id: news-channel
        webhook_url: "https://chat.example.com/api/webhooks/123/abc"
        color: 0x3498db
    subscriptions:
      - url: "https://example.com/feed.xml"
        destination: news-channel
        title: "Example News"
    ```
    """

    def __init__(self):
        """Initialize configuration with environment variables and validation."""
        self._load_environment()
        self._validate_and_set_config()

    def _load_environment(self):
        """Load environment variables from .env file and secrets file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")

        self._load_secrets_file()

    def _validate_positive_int(self, env_var: str, default: int, min_val: int = 1) -> int:
        """Validate and parse a positive integer environment variable."""
        try:
            value = int(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_color(self, env_var: str, default: int) -> int:
        """Parse an RGB color given as decimal, 0x-prefixed or #-prefixed hex."""
        raw = environ.get(env_var)
        if raw is None:
            return default
        color = parse_color(raw)
        if color is None:
            logger.warning(f"Invalid {env_var} value '{raw}', using default {default}")
            return default
        return color

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        # Basic configuration
        self.DATABASE_PATH = environ.get("DATABASE_PATH", "subscriptions.db")
        self.USER_AGENT = environ.get("USER_AGENT", "Mozilla/5.0 (compatible; FeedNotifier/1.0)")

        # Polling configuration
        self.POLL_INTERVAL_SECONDS = self._validate_positive_int("POLL_INTERVAL_SECONDS", 60, 5)
        self.FETCH_CONCURRENCY = self._validate_positive_int("FETCH_CONCURRENCY", 5, 1)
        self.MAX_ITEMS_PER_DESTINATION = self._validate_positive_int("MAX_ITEMS_PER_DESTINATION", 10, 1)

        # HTTP request configuration
        self.MAX_RESPONSE_BYTES = self._validate_positive_int("MAX_RESPONSE_BYTES", 8_000_000, 1024)
        self.HTTP_TIMEOUT = self._validate_positive_int("HTTP_TIMEOUT", 30, 5)
        self.MAX_REDIRECTS = self._validate_positive_int("MAX_REDIRECTS", 5, 0)

        # Delivery configuration
        self.DELIVERY_TIMEOUT = self._validate_positive_int("DELIVERY_TIMEOUT", 15, 1)
        self.DEFAULT_EMBED_COLOR = self._validate_color("DEFAULT_EMBED_COLOR", 0)

        # File size limits
        self.SCHEMA_FILE_SIZE_LIMIT_MB = self._validate_positive_int("SCHEMA_FILE_SIZE_LIMIT_MB", 10, 1)

        # File paths
        base_dir = path.dirname(path.abspath(__file__))
        self.SCHEMA_FILE_PATH = path.join(base_dir, "schema.sql")
        self.SUBSCRIPTIONS_CONFIG_PATH = environ.get(
            "SUBSCRIPTIONS_CONFIG_PATH", path.join(base_dir, "subscriptions.yaml")
        )

    def _load_secrets_file(self):
        """Load environment variable overrides from a YAML secrets file.

        If SECRETS_FILE environment variable is set, loads the specified YAML file
        and sets environment variables from it. Both a top-level mapping and a
        mapping nested under `environment` are supported.
        """
        secrets_file_path = environ.get("SECRETS_FILE")
        if not secrets_file_path:
            return

        secrets_config = self._safe_read_yaml(secrets_file_path, 2 * 1024 * 1024, 'secrets')
        if not isinstance(secrets_config, dict):
            if secrets_config is not None:
                logger.warning(f"Secrets file {secrets_file_path} must be a YAML mapping at the top level")
            return

        if isinstance(secrets_config.get('environment'), dict):
            env_vars = secrets_config['environment']
        else:
            env_vars = secrets_config

        secrets_loaded = 0
        for key, value in env_vars.items():
            if isinstance(key, str) and value is not None:
                environ[key] = str(value)
                secrets_loaded += 1
                logger.debug(f"Set environment variable {key} from secrets file")
            else:
                logger.warning(f"Skipping invalid environment variable in secrets file: {key}")

        logger.info(f"Loaded {secrets_loaded} environment variables from secrets file {secrets_file_path}")

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Args:
            file_path: Path to the YAML file
            max_size: Maximum allowed file size in bytes
            kind: Short label for logging context (e.g. 'secrets', 'subscriptions')

        Returns:
            Parsed YAML (mapping/list/primitive) or None on failure.
        """
        try:
            if not path.isfile(file_path):
                logger.warning(f"{kind.capitalize()} file not found at {file_path}")
                return None
            if not access(file_path, R_OK):
                logger.error(f"No read permission for {kind} file at {file_path}")
                return None
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r') as f:
                data = yaml.safe_load(f)
            if not data:
                logger.warning(f"Empty or invalid YAML in {kind} file {file_path}")
                return None
            return data
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
        except OSError as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
        return None

    def load_subscriptions_file(self, file_path: str | None = None) -> Dict[str, List[Dict[str, Any]]]:
        """Read destinations and subscriptions declared in subscriptions.yaml.

        Invalid entries are logged and dropped. Returns a mapping with
        `destinations` and `subscriptions` lists (possibly empty).
        """
        file_path = file_path or self.SUBSCRIPTIONS_CONFIG_PATH
        result: Dict[str, List[Dict[str, Any]]] = {'destinations': [], 'subscriptions': []}
        data = self._safe_read_yaml(file_path, 5 * 1024 * 1024, 'subscriptions')
        if not isinstance(data, dict):
            return result

        for entry in data.get('destinations') or []:
            if not isinstance(entry, dict) or not entry.get('id') or not entry.get('webhook_url'):
                logger.warning(f"Skipping invalid destination entry in {file_path}: {entry}")
                continue
            color = entry.get('color')
            if color is not None:
                color = parse_color(color)
                if color is None:
                    logger.warning(f"Ignoring invalid color for destination {entry['id']}")
            result['destinations'].append({
                'destination_id': str(entry['id']),
                'webhook_url': str(entry['webhook_url']).strip(),
                'name': entry.get('name'),
                'color': color,
            })

        for entry in data.get('subscriptions') or []:
            if not isinstance(entry, dict) or not entry.get('url') or not entry.get('destination'):
                logger.warning(f"Skipping invalid subscription entry in {file_path}: {entry}")
                continue
            result['subscriptions'].append({
                'feed_url': str(entry['url']).strip(),
                'destination_id': str(entry['destination']),
                'display_title': entry.get('title'),
            })

        logger.info(
            f"Loaded {len(result['destinations'])} destinations and "
            f"{len(result['subscriptions'])} subscriptions from {file_path}"
        )
        return result

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "database_path": self.DATABASE_PATH,
            "poll_interval_seconds": self.POLL_INTERVAL_SECONDS,
            "fetch_concurrency": self.FETCH_CONCURRENCY,
            "max_items_per_destination": self.MAX_ITEMS_PER_DESTINATION,
            "max_response_bytes": self.MAX_RESPONSE_BYTES,
            "http_timeout": self.HTTP_TIMEOUT,
            "delivery_timeout": self.DELIVERY_TIMEOUT,
            "secrets_file_configured": bool(environ.get("SECRETS_FILE")),
        }


def parse_color(value: Any) -> int | None:
    """Parse an RGB color from an int, decimal string, 0x hex or #hex string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 0 <= value <= 0xFFFFFF else None
    text = str(value).strip().lower()
    try:
        if text.startswith('#'):
            color = int(text[1:], 16)
        elif text.startswith('0x'):
            color = int(text, 16)
        else:
            color = int(text)
    except ValueError:
        return None
    return color if 0 <= color <= 0xFFFFFF else None

# Global configuration instance
config = Config()
