"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Database configuration"""
    host: str = "localhost"
    port: int = 5432
    user: str = "ledger_user"
    password: str = "ledger_password"
    name: str = "credit_ledger"
    url: Optional[str] = None
    echo: bool = False


@dataclass
class LedgerConfig:
    """Credit ledger behaviour"""
    price_per_credit: float = 2.0
    lock_timeout_seconds: float = 10.0
    history_batch_size: int = 100
    default_payment_mode: str = "Department Budget"


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = "logs/ledger.log"
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class AuditConfig:
    """Audit trail configuration"""
    enabled: bool = True
    log_dir: str = "logs"
    console: bool = False


@dataclass
class ApiConfig:
    """HTTP API configuration"""
    host: str = "0.0.0.0"
    port: int = 8000
    api_key: Optional[str] = None
    cors_origins: List[str] = field(default_factory=lambda: [
        "http://localhost:3000",
        "http://localhost:5173",
    ])


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.database: DatabaseConfig = DatabaseConfig()
        self.ledger: LedgerConfig = LedgerConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.audit: AuditConfig = AuditConfig()
        self.api: ApiConfig = ApiConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_database()
        self._parse_ledger()
        self._parse_logging()
        self._parse_audit()
        self._parse_api()
        self._validate()

    def _section(self, name: str) -> Dict[str, Any]:
        cfg = self._raw_config.get(name) or {}
        if not isinstance(cfg, dict):
            raise ConfigurationError(f"Section '{name}' must be a mapping")
        return cfg

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._section('database')
        self.database = DatabaseConfig(
            host=cfg.get('host', self.database.host),
            port=cfg.get('port', self.database.port),
            user=cfg.get('user', self.database.user),
            password=cfg.get('password', self.database.password),
            name=cfg.get('name', self.database.name),
            url=cfg.get('url', self.database.url),
            echo=cfg.get('echo', self.database.echo)
        )

    def _parse_ledger(self) -> None:
        """Parse ledger configuration"""
        cfg = self._section('ledger')
        self.ledger = LedgerConfig(
            price_per_credit=cfg.get('price_per_credit', 2.0),
            lock_timeout_seconds=cfg.get('lock_timeout_seconds', 10.0),
            history_batch_size=cfg.get('history_batch_size', 100),
            default_payment_mode=cfg.get('default_payment_mode', 'Department Budget')
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._section('logging')
        self.logging = LoggingConfig(
            level=str(cfg.get('level', 'INFO')).upper(),
            file=cfg.get('file', 'logs/ledger.log'),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    def _parse_audit(self) -> None:
        """Parse audit trail configuration"""
        cfg = self._section('audit')
        self.audit = AuditConfig(
            enabled=cfg.get('enabled', True),
            log_dir=cfg.get('log_dir', 'logs'),
            console=cfg.get('console', False)
        )

    def _parse_api(self) -> None:
        """Parse API configuration"""
        cfg = self._section('api')
        self.api = ApiConfig(
            host=cfg.get('host', self.api.host),
            port=cfg.get('port', self.api.port),
            api_key=cfg.get('api_key'),
            cors_origins=cfg.get('cors_origins', self.api.cors_origins)
        )

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary (secrets masked)"""
        return {
            'database': {
                'host': self.database.host,
                'port': self.database.port,
                'user': self.database.user,
                'password': '***' if self.database.password else '',
                'name': self.database.name,
                'url': self.database.url,
                'echo': self.database.echo
            },
            'ledger': {
                'price_per_credit': self.ledger.price_per_credit,
                'lock_timeout_seconds': self.ledger.lock_timeout_seconds,
                'history_batch_size': self.ledger.history_batch_size,
                'default_payment_mode': self.ledger.default_payment_mode
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file,
                'console': self.logging.console
            },
            'audit': {
                'enabled': self.audit.enabled,
                'log_dir': self.audit.log_dir
            },
            'api': {
                'host': self.api.host,
                'port': self.api.port,
                'api_key': '***' if self.api.api_key else None,
                'cors_origins': self.api.cors_origins
            }
        }

    def _validate(self) -> None:
        """Validate configuration values

        Raises:
            ConfigurationError: Listing every invalid value found
        """
        errors = []

        if not isinstance(self.database.port, int) or not 0 < self.database.port < 65536:
            errors.append(f"database.port must be between 1 and 65535, got {self.database.port!r}")

        price = self.ledger.price_per_credit
        if isinstance(price, bool) or not isinstance(price, (int, float)) or price < 0:
            errors.append(f"ledger.price_per_credit must be a non-negative number, got {price!r}")

        timeout = self.ledger.lock_timeout_seconds
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            errors.append(f"ledger.lock_timeout_seconds must be positive, got {timeout!r}")

        batch = self.ledger.history_batch_size
        if isinstance(batch, bool) or not isinstance(batch, int) or batch < 1:
            errors.append(f"ledger.history_batch_size must be a positive integer, got {batch!r}")

        if self.logging.level not in _LOG_LEVELS:
            errors.append(
                f"logging.level must be one of {', '.join(_LOG_LEVELS)}, got {self.logging.level!r}"
            )

        if not isinstance(self.api.cors_origins, list):
            errors.append("api.cors_origins must be a list")

        if errors:
            raise ConfigurationError("Invalid configuration: " + "; ".join(errors))


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)


def configure_logging(config: Optional[LoggingConfig] = None) -> None:
    """Apply a LoggingConfig to the root logger

    Args:
        config: Logging settings (taken from get_config() if omitted)
    """
    config = config or get_config().logging

    handlers: List[logging.Handler] = []
    if config.console:
        handlers.append(logging.StreamHandler())
    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, config.level, logging.INFO),
        format=config.format,
        handlers=handlers or None,
        force=True
    )
