"""Configuration system for recorder-sentinel.

This module provides configuration management for the browser, injection,
supervision and server settings, including YAML loading, validation and
environment-specific overrides.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

from .capture.browser_factory import BrowserConfig, BrowserEngineType
from .injection import DEFAULT_CHUNK_SIZE, DEFAULT_CHUNK_THRESHOLD, PERMISSIVE_POLICY
from .payload import PayloadTiming
from .supervision import SchedulerConfig, SupervisorConfig

ENV_VAR = 'RECORDER_SENTINEL_ENV'
CONFIG_PATH_VAR = 'RECORDER_SENTINEL_CONFIG'


def _as_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    return list(value or [])


class RecorderSettings(BaseModel):
    """Root configuration for the recorder."""

    environment: str = Field(default="production", description="Environment name")
    browser: Dict[str, Any] = Field(default_factory=dict, description="Browser configuration")
    injection: Dict[str, Any] = Field(default_factory=dict, description="Injection configuration")
    supervision: Dict[str, Any] = Field(default_factory=dict, description="Supervision configuration")
    server: Dict[str, Any] = Field(default_factory=dict, description="API server configuration")
    environments: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Environment-specific overrides"
    )

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        valid_environments = {'production', 'staging', 'development', 'test'}
        if v not in valid_environments:
            raise ValueError(f"Environment must be one of: {valid_environments}")
        return v

    def section(self, name: str) -> Dict[str, Any]:
        """Get a config section with environment overrides applied."""
        config = dict(getattr(self, name))

        if self.environment in self.environments:
            env_config = self.environments[self.environment]
            if name in env_config:
                config.update(env_config[name])

        return config

    def get_browser_config(self) -> BrowserConfig:
        """Get browser configuration with environment overrides applied."""
        config = self.section('browser')

        return BrowserConfig(
            engine=getattr(BrowserEngineType, config.get('engine', 'chromium').upper()),
            headless=config.get('headless', False),
            slow_mo=config.get('slow_mo', 0),
            viewport={'width': config.get('window_width', 1366), 'height': config.get('window_height', 768)},
            user_agent=config.get('user_agent'),
            locale=config.get('locale'),
            ignore_https_errors=config.get('ignore_https_errors', True),
            bypass_csp=config.get('bypass_csp', True),
            command_timeout_seconds=config.get('command_timeout_seconds', 10.0),
            navigation_timeout_seconds=config.get('navigation_timeout_seconds', 30.0),
        )

    def get_injection_options(self) -> Dict[str, Any]:
        """Get injection chain and CSP options with environment overrides applied."""
        config = self.section('injection')

        return {
            'chunk_threshold': int(config.get('chunk_threshold', DEFAULT_CHUNK_THRESHOLD)),
            'chunk_size': int(config.get('chunk_size', DEFAULT_CHUNK_SIZE)),
            'verify_delay_seconds': float(config.get('verify_delay_seconds', 0.0)),
            'deferred_settle_ms': int(config.get('deferred_settle_ms', 100)),
            'csp_mitigation': bool(config.get('csp_mitigation', True)),
            'csp_policy': config.get('csp_policy', PERMISSIVE_POLICY),
        }

    def get_supervisor_config(self) -> SupervisorConfig:
        """Get supervisor configuration with environment overrides applied."""
        config = self.section('supervision')
        timing = config.get('payload_timing') or {}

        return SupervisorConfig(
            max_reinject_attempts=config.get('max_reinject_attempts', 5),
            lock_wait_seconds=config.get('lock_wait_seconds', 30.0),
            unreachable_error_threshold=config.get('unreachable_error_threshold', 2),
            ended_history=config.get('ended_history', 100),
            payload_timing=PayloadTiming(**timing),
        )

    def get_scheduler_config(self) -> SchedulerConfig:
        """Get health-check scheduler configuration with environment overrides applied."""
        config = self.section('supervision')

        return SchedulerConfig(
            warmup_seconds=config.get('warmup_seconds', 30.0),
            interval_seconds=config.get('check_interval_seconds', 15.0),
            min_check_gap_seconds=config.get('min_check_gap_seconds', 10.0),
            stale_after_seconds=config.get('stale_after_seconds', 300.0),
            max_concurrent_checks=config.get('max_concurrent_checks', 10),
        )

    def get_server_options(self) -> Dict[str, Any]:
        config = self.section('server')
        return {
            'host': config.get('host', '127.0.0.1'),
            'port': int(config.get('port', 8000)),
            'public_url': config.get('public_url'),
            'max_events_per_session': int(config.get('max_events_per_session', 10000)),
            'max_event_sessions': int(config.get('max_event_sessions', 200)),
            'cors_origins': _as_list(config.get('cors_origins', ['*'])),
        }


class RecorderConfigManager:
    """Manager for recorder configuration loading and caching."""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to the config YAML file. Defaults to
                $RECORDER_SENTINEL_CONFIG, then config/recorder.yaml
        """
        if config_path is None:
            config_path = os.environ.get(CONFIG_PATH_VAR)
        if config_path is None:
            # Default to config/recorder.yaml relative to project root
            project_root = Path(__file__).parent.parent
            config_path = project_root / "config" / "recorder.yaml"

        self.config_path = Path(config_path)
        self._config: Optional[RecorderSettings] = None
        self._loaded_env = None

    def load_config(self, force_reload: bool = False) -> RecorderSettings:
        """Load configuration from YAML file.

        A missing file yields the built-in defaults.

        Args:
            force_reload: Force reload even if already cached

        Returns:
            Loaded and validated configuration

        Raises:
            yaml.YAMLError: If YAML is invalid
            ValueError: If configuration validation fails
        """
        current_env = os.environ.get(ENV_VAR, 'production')

        if self._config is not None and not force_reload and current_env == self._loaded_env:
            return self._config

        config_data: Dict[str, Any] = {}
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    config_data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise yaml.YAMLError(f"Invalid YAML in {self.config_path}: {e}")

        # Override environment from env var if set
        if current_env != 'production':
            config_data['environment'] = current_env

        try:
            self._config = RecorderSettings(**config_data)
        except Exception as e:
            raise ValueError(f"Configuration validation failed: {e}")

        self._loaded_env = current_env
        return self._config

    @property
    def config(self) -> RecorderSettings:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            return self.load_config()
        return self._config

    @property
    def environment(self) -> str:
        """Get current environment."""
        return self.config.environment

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == 'production'


# Global config manager instance
_config_manager: Optional[RecorderConfigManager] = None


def get_config(config_path: Optional[Union[str, Path]] = None) -> RecorderConfigManager:
    """Get global recorder configuration manager.

    Args:
        config_path: Path to config file (only used on first call)

    Returns:
        Global RecorderConfigManager instance
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = RecorderConfigManager(config_path)
    return _config_manager


def reset_config() -> None:
    """Drop the global manager so the next get_config() reloads."""
    global _config_manager
    _config_manager = None
