from typing import Optional, Dict, Any
import os
from dotenv import load_dotenv
from rich.console import Console
from rich.prompt import Prompt
import keyring
import logging

logger = logging.getLogger(__name__)

console = Console()

KEYRING_SERVICE = 'feedsync'

GOOGLE_SCOPES = [
    'openid',
    'https://www.googleapis.com/auth/userinfo.email',
    'https://www.googleapis.com/auth/calendar.readonly',
]

RECURRENCE_STRATEGIES = ('propagate', 'materialize')


class ConfigManager:
    """Manage application configuration and environment variables"""

    def __init__(self, env_file: str = None):
        """Initialize config manager"""
        if env_file:
            self.env_file = env_file
        else:
            self.env_file = os.path.join(os.getcwd(), '.env')
            logger.debug(f"Looking for .env file at: {self.env_file}")

        self.config = {}
        self.load_config()

    def load_config(self):
        """Load configuration from environment and .env file"""
        if os.path.exists(self.env_file):
            logger.info(f"Loading environment variables from {self.env_file}")
            load_dotenv(self.env_file, override=True)

        self.config['app'] = self._load_app_config()
        self.config['google'] = self._load_google_config(self.config['app']['base_url'])
        self.config['development'] = self._load_dev_config()

    def _load_app_config(self) -> Dict[str, Any]:
        """Load application settings"""
        strategy = os.getenv('RECURRENCE_STRATEGY', 'propagate').strip().lower()
        if strategy not in RECURRENCE_STRATEGIES:
            logger.warning(f"Unknown RECURRENCE_STRATEGY {strategy!r}, falling back to 'propagate'")
            strategy = 'propagate'

        database_path = self._expand_path(os.getenv('DATABASE_PATH', '~/.feedsync/feedsync.db'))
        return {
            'timezone': os.getenv('TIMEZONE', 'America/Los_Angeles'),
            'base_url': os.getenv('APP_BASE_URL', 'http://localhost:8000').rstrip('/'),
            'database_url': os.getenv('DATABASE_URL', f'sqlite:///{database_path}'),
            'sync_page_size': int(os.getenv('SYNC_PAGE_SIZE', 2000)),
            'recurrence_strategy': strategy,
            'session_ttl_hours': int(os.getenv('SESSION_TTL_HOURS', 24)),
        }

    def _load_google_config(self, base_url: str) -> Dict[str, Any]:
        """Load Google OAuth client settings."""
        scopes = os.getenv('GOOGLE_SCOPES')
        return {
            'client_id': os.getenv('GOOGLE_CLIENT_ID') or self._get_secret('google_client_id'),
            'client_secret': os.getenv('GOOGLE_CLIENT_SECRET') or self._get_secret('google_client_secret'),
            'redirect_uri': os.getenv('GOOGLE_REDIRECT_URI', f'{base_url}/api/calendar/google'),
            'scopes': [s.strip() for s in scopes.split(',') if s.strip()] if scopes else list(GOOGLE_SCOPES),
        }

    def _load_dev_config(self) -> Dict[str, Any]:
        """Load development settings"""
        return {
            'debug': self._parse_bool(os.getenv('DEBUG', 'false')),
            'log_level': os.getenv('LOG_LEVEL', 'INFO').upper()
        }

    def _expand_path(self, path: str) -> str:
        """Expand user and environment variables in path"""
        if not path:
            return path
        return os.path.expandvars(os.path.expanduser(path))

    def _parse_bool(self, value: str) -> bool:
        """Parse string boolean value"""
        return str(value).lower() in ('true', '1', 'yes', 'on')

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value"""
        parts = key.split('.')
        value = self.config
        for part in parts:
            if isinstance(value, dict):
                value = value.get(part)
            else:
                return default
        return value if value is not None else default

    def validate(self) -> bool:
        """Validate required configuration"""
        required = {
            'google.client_id': 'Google OAuth client ID is required to connect accounts',
            'google.client_secret': 'Google OAuth client secret is required to connect accounts'
        }

        missing = []
        for key, message in required.items():
            if not self.get(key):
                missing.append(f"- {key}: {message}")

        if missing:
            console.print("[bold red]Missing Required Configuration:[/bold red]")
            for msg in missing:
                console.print(msg)
            return False

        return True

    def setup_wizard(self):
        """Interactive setup wizard for configuration"""
        console.print("[bold blue]feedsync Setup Wizard[/bold blue]")
        console.print("This wizard stores your Google OAuth client in the system keyring.\n")

        client_id = Prompt.ask("Enter your Google Client ID")
        client_secret = Prompt.ask("Enter your Google Client Secret", password=True)
        if client_id and client_secret:
            self._save_secret('google_client_id', client_id)
            self._save_secret('google_client_secret', client_secret)

        if not os.path.exists(self.env_file):
            self._create_env_file()

        self.load_config()

        console.print("\n[bold green]Setup complete! Configuration has been saved.[/bold green]")

    def _save_secret(self, key: str, value: str):
        """Save secret to system keyring"""
        if value:
            keyring.set_password(KEYRING_SERVICE, key, value)

    def _get_secret(self, key: str) -> Optional[str]:
        """Get secret from system keyring"""
        try:
            return keyring.get_password(KEYRING_SERVICE, key)
        except Exception as e:
            # No usable keyring backend on this machine
            logger.debug(f"Keyring lookup for {key} failed: {e}")
            return None

    def _create_env_file(self):
        """Create .env file with non-sensitive settings"""
        env_content = """# Application Settings
TIMEZONE=America/Los_Angeles
APP_BASE_URL=http://localhost:8000
DATABASE_PATH=~/.feedsync/feedsync.db
SYNC_PAGE_SIZE=2000
RECURRENCE_STRATEGY=propagate
SESSION_TTL_HOURS=24

# Development Settings
DEBUG=false
LOG_LEVEL=INFO"""

        with open(self.env_file, 'w') as f:
            f.write(env_content)
