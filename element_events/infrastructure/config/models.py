"""
Configuration models and data structures.

This module defines the configuration models used throughout the package,
with validation of the values the core depends on.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

DEFAULT_PRIORITY_LEVELS = ["low", "normal", "high", "immediate"]


@dataclass
class EventQueueConfig:
    """Event queue configuration."""
    max_queue_size: int = 1000
    flush_interval: float = 0.016  # seconds, roughly one frame at 60 fps
    priority_levels: List[str] = field(default_factory=lambda: list(DEFAULT_PRIORITY_LEVELS))
    deduplicate_events: bool = True

    def __post_init__(self) -> None:
        if self.max_queue_size <= 0:
            raise ValueError(f"max_queue_size must be positive, got {self.max_queue_size}")
        if self.flush_interval <= 0:
            raise ValueError(f"flush_interval must be positive, got {self.flush_interval}")
        unknown = [p for p in self.priority_levels if p not in DEFAULT_PRIORITY_LEVELS]
        if unknown:
            raise ValueError(f"Unknown priority levels: {unknown}")
        if not self.priority_levels:
            raise ValueError("priority_levels cannot be empty")


@dataclass
class EventManagerConfig:
    """Event manager configuration."""
    queue: EventQueueConfig = field(default_factory=EventQueueConfig)
    max_history_size: int = 1000
    enable_persistence: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.queue, dict):
            self.queue = EventQueueConfig(**self.queue)
        if self.max_history_size < 0:
            raise ValueError(f"max_history_size cannot be negative, got {self.max_history_size}")


@dataclass
class TransportConfig:
    """Transport connection configuration."""
    enabled: bool = False
    url: str = "memory://default"
    timeout: float = 30.0
    retry_attempts: int = 3
    retry_delay: float = 1.0
    max_retry_delay: float = 30.0
    auto_reconnect: bool = True
    connect_on_start: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"Transport timeout must be positive, got {self.timeout}")
        if self.retry_attempts < 0:
            raise ValueError(f"retry_attempts cannot be negative, got {self.retry_attempts}")
        if self.retry_delay < 0 or self.max_retry_delay < 0:
            raise ValueError("Retry delays cannot be negative")


@dataclass
class LifecycleConfig:
    """Lifecycle manager configuration."""
    capabilities: Dict[str, Any] = field(default_factory=dict)
    update_source: str = "api"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_directory: str = "logs"
    max_file_size: str = "10 MB"
    backup_count: int = 5
    console_enabled: bool = True
    file_enabled: bool = False


@dataclass
class ApplicationConfig:
    """Main application configuration."""

    name: str = "Element Events"
    version: str = "0.1.0"
    debug: bool = False
    environment: str = "production"

    events: EventManagerConfig = field(default_factory=EventManagerConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    config_file_path: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate_logging()
        self._validate_transport_url()

    def _validate_logging(self) -> None:
        valid_levels = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
        if self.logging.level.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {self.logging.level}")
        if self.logging.file_enabled:
            path = Path(self.logging.log_directory)
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ValueError(f"Cannot create directory {path}: {e}")

    def _validate_transport_url(self) -> None:
        if self.transport.enabled and "://" not in self.transport.url:
            raise ValueError(f"Transport url must include a scheme, got {self.transport.url!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ApplicationConfig':
        """Create configuration from dictionary."""
        return cls(
            name=data.get('name', 'Element Events'),
            version=data.get('version', '0.1.0'),
            debug=data.get('debug', False),
            environment=data.get('environment', 'production'),
            events=EventManagerConfig(**data.get('events', {})),
            lifecycle=LifecycleConfig(**data.get('lifecycle', {})),
            transport=TransportConfig(**data.get('transport', {})),
            logging=LoggingConfig(**data.get('logging', {})),
            config_file_path=data.get('config_file_path'),
        )
