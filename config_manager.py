"""
Configuration management for the Now-Playing Chat Bot.

Settings live in a YAML file that is merged over built-in defaults and
validated as a whole. The Twitch client ID may also come from the
TWITCH_CLIENT_ID environment variable, which takes precedence.
"""

import copy
import yaml
import os
from typing import Dict, Any, List
from pathlib import Path
import logging


CLIENT_ID_ENV_VAR = "TWITCH_CLIENT_ID"

DEFAULT_CONFIG: Dict[str, Any] = {
    'twitch': {
        'client_id': '',
        'scopes': ['user:read:chat', 'user:write:chat'],
        'auth_base_url': 'https://id.twitch.tv/oauth2',
        'api_base_url': 'https://api.twitch.tv/helix',
        'eventsub_url': 'wss://eventsub.wss.twitch.tv/ws',
        'request_timeout': 10.0,
        'welcome_timeout': 10.0,
    },
    'bot': {
        'channel': '',
        'send_connection_message': True,
        'connection_message': 'Now-playing bot is connected!',
        'debug_logging': False,
        'reconnect': {
            'enabled': False,
            'max_attempts': 5,
            'base_delay': 2.0,
            'max_delay': 60.0,
        },
    },
    'commands': {
        'enabled': True,
        'song': {'enabled': True},
        'last_song': {'enabled': True},
        'global_cooldown': 3.0,
        'user_cooldown': 10.0,
    },
    'credentials': {
        'service_name': 'nowplaying-chat-bot',
    },
    'now_playing': {
        'file': '',
    },
    'logging': {
        'level': 'INFO',
        'file': 'nowplaying_bot.log',
    },
}


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""
    pass


class MissingClientIDError(ConfigurationError):
    """Raised when no Twitch client ID is available from env or config."""

    def __init__(self, message: str = "Twitch Client ID is not configured"):
        super().__init__(message)


class ConfigurationManager:
    """Manages application configuration from YAML files."""

    def __init__(self, config_path: str = "config.yml"):
        """Initialize configuration manager.

        Args:
            config_path: Path to the configuration file
        """
        self.config_path = Path(config_path)
        self.config: Dict[str, Any] = {}
        self.logger = logging.getLogger(__name__)

        # Load configuration on initialization
        self.load_config()

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file and merge it over the defaults.

        Returns:
            The loaded configuration dictionary

        Raises:
            ConfigurationError: If config file cannot be loaded or is invalid
        """
        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r', encoding='utf-8') as file:
                loaded = yaml.safe_load(file) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except OSError as e:
            raise ConfigurationError(f"Error loading config file: {e}")

        if not isinstance(loaded, dict):
            raise ConfigurationError("Configuration file must contain a mapping at the top level")

        config = copy.deepcopy(DEFAULT_CONFIG)
        self._deep_update(config, loaded)
        self.validate_config(config)

        self.config = config
        self.logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def validate_config(self, config: Dict[str, Any]) -> bool:
        """Validate configuration structure and values.

        Args:
            config: Configuration dictionary to validate

        Returns:
            True if configuration is valid

        Raises:
            ConfigurationError: If configuration is invalid
        """
        required_sections = ['twitch', 'bot', 'commands', 'credentials']

        for section in required_sections:
            if not isinstance(config.get(section), dict):
                raise ConfigurationError(f"Missing required configuration section: {section}")

        self._validate_twitch(config['twitch'])
        self._validate_bot(config['bot'])
        self._validate_commands(config['commands'])
        self._validate_credentials(config['credentials'])

        return True

    def _validate_twitch(self, twitch: Dict[str, Any]) -> None:
        """Validate Twitch endpoint and OAuth configuration."""
        for field in ['auth_base_url', 'api_base_url']:
            value = twitch.get(field)
            if not isinstance(value, str) or not value.startswith(('http://', 'https://')):
                raise ConfigurationError(f"Twitch {field} must be an http(s) URL")

        eventsub_url = twitch.get('eventsub_url')
        if not isinstance(eventsub_url, str) or not eventsub_url.startswith(('ws://', 'wss://')):
            raise ConfigurationError("Twitch eventsub_url must be a ws(s) URL")

        scopes = twitch.get('scopes')
        if not isinstance(scopes, list) or not scopes or not all(isinstance(s, str) and s for s in scopes):
            raise ConfigurationError("Twitch scopes must be a non-empty list of strings")

        if not isinstance(twitch.get('client_id'), str):
            raise ConfigurationError("Twitch client_id must be a string")

        for field in ['request_timeout', 'welcome_timeout']:
            value = twitch.get(field)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(f"Twitch {field} must be a positive number")

    def _validate_bot(self, bot: Dict[str, Any]) -> None:
        """Validate bot behaviour configuration."""
        if not isinstance(bot.get('channel'), str):
            raise ConfigurationError("Bot channel must be a string")

        if len(bot['channel'].strip()) > 25:
            raise ConfigurationError("Bot channel name must be at most 25 characters")

        for field in ['send_connection_message', 'debug_logging']:
            if not isinstance(bot.get(field), bool):
                raise ConfigurationError(f"Bot {field} must be a boolean")

        if not isinstance(bot.get('connection_message'), str):
            raise ConfigurationError("Bot connection_message must be a string")

        reconnect = bot.get('reconnect')
        if not isinstance(reconnect, dict):
            raise ConfigurationError("Bot reconnect must be a mapping")

        if not isinstance(reconnect.get('enabled'), bool):
            raise ConfigurationError("Reconnect enabled must be a boolean")

        max_attempts = reconnect.get('max_attempts')
        if isinstance(max_attempts, bool) or not isinstance(max_attempts, int) or max_attempts < 1:
            raise ConfigurationError("Reconnect max_attempts must be a positive integer")

        for field in ['base_delay', 'max_delay']:
            value = reconnect.get(field)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(f"Reconnect {field} must be a positive number")

        if reconnect['base_delay'] > reconnect['max_delay']:
            raise ConfigurationError("Reconnect base_delay cannot exceed max_delay")

    def _validate_commands(self, commands: Dict[str, Any]) -> None:
        """Validate bot command configuration."""
        if not isinstance(commands.get('enabled'), bool):
            raise ConfigurationError("Commands enabled must be a boolean")

        for name in ['song', 'last_song']:
            command = commands.get(name)
            if not isinstance(command, dict) or not isinstance(command.get('enabled'), bool):
                raise ConfigurationError(f"Command '{name}' must define a boolean 'enabled' flag")

        for field in ['global_cooldown', 'user_cooldown']:
            value = commands.get(field)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ConfigurationError(f"Commands {field} must be a non-negative number")

    def _validate_credentials(self, credentials: Dict[str, Any]) -> None:
        """Validate credential store configuration."""
        service_name = credentials.get('service_name')
        if not isinstance(service_name, str) or not service_name.strip():
            raise ConfigurationError("Credentials service_name must be a non-empty string")

    def _deep_update(self, base_dict: Dict[str, Any], update_dict: Dict[str, Any]) -> None:
        """Recursively update nested dictionaries."""
        for key, value in update_dict.items():
            if key in base_dict and isinstance(base_dict[key], dict) and isinstance(value, dict):
                self._deep_update(base_dict[key], value)
            else:
                base_dict[key] = value

    def resolve_client_id(self) -> str:
        """Resolve the Twitch client ID.

        The ``TWITCH_CLIENT_ID`` environment variable wins over the
        ``twitch.client_id`` configuration value.

        Returns:
            The client ID

        Raises:
            MissingClientIDError: If neither source provides a value
        """
        env_value = os.environ.get(CLIENT_ID_ENV_VAR, '').strip()
        if env_value:
            return env_value

        config_value = self.get_twitch_config().get('client_id', '').strip()
        if config_value:
            return config_value

        raise MissingClientIDError()

    def get_twitch_config(self) -> Dict[str, Any]:
        """Get Twitch endpoint and OAuth configuration."""
        return self.config.get('twitch', {})

    def get_bot_config(self) -> Dict[str, Any]:
        """Get bot behaviour configuration."""
        return self.config.get('bot', {})

    def get_reconnect_config(self) -> Dict[str, Any]:
        """Get reconnect policy configuration."""
        return self.get_bot_config().get('reconnect', {})

    def get_commands_config(self) -> Dict[str, Any]:
        """Get bot command configuration."""
        return self.config.get('commands', {})

    def get_credentials_config(self) -> Dict[str, Any]:
        """Get credential store configuration."""
        return self.config.get('credentials', {})

    def get_now_playing_config(self) -> Dict[str, Any]:
        """Get now-playing provider configuration."""
        return self.config.get('now_playing', {})

    def get_logging_config(self) -> Dict[str, Any]:
        """Get logging configuration."""
        return self.config.get('logging', {})

    def get_scopes(self) -> List[str]:
        """Get the OAuth scopes the bot requests and requires."""
        return list(self.get_twitch_config().get('scopes', []))

