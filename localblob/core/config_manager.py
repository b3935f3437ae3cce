"""
Configuration management for LocalBlob.

Handles loading, validation, and access to configuration settings.
"""

import base64
import binascii
import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional
from enum import Enum

import yaml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict

logger = logging.getLogger(__name__)

# Well-known development account, as used by local storage emulators
DEFAULT_ACCOUNT_NAME = "devstoreaccount1"
DEFAULT_ACCOUNT_KEY = (
    "Eby8vdM02xNOcqFlqUwJPLlmEtlCDXJ1OUzFT50uSRZ6IFsuFq2UVErCz4I6tq/K1SZFPTOtr/KBHBeksoGMGw=="
)


class LogLevel(str, Enum):
    """Valid log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AccountConfig(BaseModel):
    """Storage account identity and signing key."""
    name: str = DEFAULT_ACCOUNT_NAME
    key: str = Field(default=DEFAULT_ACCOUNT_KEY, description="Base64-encoded account key")
    sas_version: str = "2021-08-06"
    
    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        """Account key must be valid base64."""
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("Account key must be base64-encoded") from exc
        return v


class StorageConfig(BaseModel):
    """Storage engine tuning."""
    uncommitted_block_retention_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    copy_chunk_size: int = Field(default=4 * 1024 * 1024, gt=0)
    max_page_size: int = Field(default=5000, ge=1, le=5000)


class RetryConfig(BaseModel):
    """Retry policy for transient failures at the service boundary."""
    max_attempts: int = Field(default=3, ge=1)
    initial_backoff: float = Field(default=0.5, ge=0.0)
    max_backoff: float = Field(default=10.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)


class FaultPattern(str, Enum):
    """Failure injection patterns."""
    RANDOM = "random"
    SEQUENTIAL = "sequential"


class FaultInjectionConfig(BaseModel):
    """Transient failure injection, for exercising client retry logic."""
    enabled: bool = False
    failure_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    pattern: FaultPattern = FaultPattern.RANDOM
    every_n: int = Field(default=3, ge=1, description="Sequential pattern: every Nth call fails")
    seed: Optional[int] = None


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: LogLevel = LogLevel.INFO
    format: str = "json"
    file: Optional[str] = None
    rotation_size: str = "10MB"
    rotation_count: int = 5
    module_levels: Optional[Dict[str, str]] = Field(
        default=None,
        description="Per-module log levels, e.g., {'localblob.services.blob.leases': 'DEBUG'}"
    )


class LocalBlobConfig(BaseModel):
    """Main LocalBlob configuration schema."""
    
    version: str = Field(default="0.1.0", description="Configuration version")
    
    account: AccountConfig = Field(default_factory=AccountConfig)
    
    storage: StorageConfig = Field(default_factory=StorageConfig)
    
    retry: RetryConfig = Field(default_factory=RetryConfig)
    
    fault_injection: FaultInjectionConfig = Field(default_factory=FaultInjectionConfig)
    
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    
    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate version format."""
        parts = v.split(".")
        if len(parts) != 3:
            raise ValueError("Version must be in format x.y.z")
        for part in parts:
            if not part.isdigit():
                raise ValueError("Version components must be numeric")
        return v
    
    model_config = ConfigDict(use_enum_values=True)


class ConfigManager:
    """
    Manages LocalBlob configuration loading and validation.
    
    Configuration precedence (highest to lowest):
    1. CLI arguments
    2. Environment variables (LOCALBLOB_*)
    3. Configuration file (YAML/JSON)
    4. Defaults
    """
    
    def __init__(self):
        self._config: Optional[LocalBlobConfig] = None
        self._config_file: Optional[Path] = None
    
    def load(
        self,
        config_file: Optional[str] = None,
        cli_overrides: Optional[Dict[str, Any]] = None
    ) -> LocalBlobConfig:
        """
        Load and validate configuration from multiple sources.
        
        Args:
            config_file: Path to configuration file (YAML or JSON)
            cli_overrides: Dictionary of CLI argument overrides
        
        Returns:
            Validated LocalBlobConfig instance
        
        Raises:
            ValidationError: If configuration is invalid
            FileNotFoundError: If specified config file doesn't exist
        """
        logger.debug("Loading LocalBlob configuration")
        
        config_dict: Dict[str, Any] = {}
        
        if config_file:
            config_dict = self._load_from_file(config_file)
            self._config_file = Path(config_file)
            logger.info(f"Loaded configuration from file: {config_file}")
        
        env_config = self._load_from_env()
        config_dict = self._merge_configs(config_dict, env_config)
        if env_config:
            logger.info(f"Applied {len(env_config)} environment variable overrides")
        
        if cli_overrides:
            config_dict = self._merge_configs(config_dict, cli_overrides)
            logger.info(f"Applied {len(cli_overrides)} CLI argument overrides")
        
        try:
            self._config = LocalBlobConfig(**config_dict)
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise
        
        logger.debug(f"Active configuration: {json.dumps(self.redacted())}")
        return self._config
    
    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file."""
        path = Path(file_path)
        
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")
        
        with open(path, 'r') as f:
            if path.suffix in ['.yaml', '.yml']:
                return yaml.safe_load(f) or {}
            elif path.suffix == '.json':
                return json.load(f)
            else:
                raise ValueError(f"Unsupported config file format: {path.suffix}")
    
    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        config: Dict[str, Any] = {}
        
        if account_name := os.getenv("LOCALBLOB_ACCOUNT_NAME"):
            config.setdefault("account", {})["name"] = account_name
        if account_key := os.getenv("LOCALBLOB_ACCOUNT_KEY"):
            config.setdefault("account", {})["key"] = account_key
        
        if log_level := os.getenv("LOCALBLOB_LOG_LEVEL"):
            config.setdefault("logging", {})["level"] = log_level.upper()
        if log_file := os.getenv("LOCALBLOB_LOG_FILE"):
            config.setdefault("logging", {})["file"] = log_file
        
        if max_attempts := os.getenv("LOCALBLOB_RETRY_MAX_ATTEMPTS"):
            config.setdefault("retry", {})["max_attempts"] = int(max_attempts)
        
        if fault_rate := os.getenv("LOCALBLOB_FAULT_RATE"):
            config.setdefault("fault_injection", {})["enabled"] = True
            config["fault_injection"]["failure_rate"] = float(fault_rate)
        
        return config
    
    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two configuration dictionaries."""
        result = base.copy()
        
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value
        
        return result
    
    def redacted(self) -> Dict[str, Any]:
        """Return the loaded configuration with the account key masked."""
        config_dict = self.get_config().model_dump()
        config_dict["account"]["key"] = "***REDACTED***"
        return config_dict
    
    def get_config(self) -> LocalBlobConfig:
        """
        Get the loaded configuration.
        
        Raises:
            RuntimeError: If configuration hasn't been loaded
        """
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call load() first.")
        return self._config
    
    def reload(self) -> LocalBlobConfig:
        """Reload configuration from the same sources."""
        config_file = str(self._config_file) if self._config_file else None
        return self.load(config_file=config_file)
