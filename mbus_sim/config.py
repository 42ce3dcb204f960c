"""
Configuration Management
Handles loading and validation of configuration from YAML/JSON files
and MBUS_SIM_* environment variables.
"""

import os
import json
from pathlib import Path
from typing import Optional, Tuple, Type
import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from mbus_sim.frames import SHORT_REQUEST_CODES, SND_UD1


class FaultInjectionConfig(BaseModel):
    """Simulated link failure while streaming a telegram"""
    enabled: bool = False
    abort_after_chunks: int = Field(3, ge=1)


class ServerConfig(BaseModel):
    """Simulated M-Bus slave listener"""
    host: str = "0.0.0.0"
    port: int = Field(8000, ge=0, le=65535)
    mode: str = Field("mutating", pattern="^(mutating|static)$")
    chunk_size: int = Field(24, ge=1)
    short_frame_delay: float = Field(1.0, ge=0.0)
    long_frame_delay: float = Field(0.5, ge=0.0)
    read_size: int = Field(4096, ge=1)
    fault_injection: FaultInjectionConfig = FaultInjectionConfig()


class DeviceConfig(BaseModel):
    """Description and template telegram sources"""
    description: str = ""
    telegram: str = ""


class ClientConfig(BaseModel):
    """Reassembly client target"""
    host: str = "127.0.0.1"
    port: int = Field(8000, ge=1, le=65535)
    address: int = Field(1, ge=0, le=250)
    timeout: float = Field(3.0, gt=0.0)
    control: int = SND_UD1

    @field_validator("control")
    @classmethod
    def validate_control(cls, v):
        """Only SND_UD1/SND_UD2 short frames are answered by the slave"""
        if v not in SHORT_REQUEST_CODES:
            raise ValueError(f"Unsupported request control code: 0x{v:02X}")
        return v


class MonitoringConfig(BaseModel):
    """Monitoring & Health Check Settings"""
    enable_http: bool = False
    http_port: int = Field(8080, ge=0, le=65535)
    enable_metrics: bool = True


class LoggingConfig(BaseModel):
    """Logging Configuration"""
    level: str = Field("INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    format: str = Field("text", pattern="^(text|json)$")
    file: str = ""
    max_size_mb: int = Field(50, ge=1)
    backup_count: int = Field(5, ge=0)
    error_file: str = ""


class Config(BaseSettings):
    """Main Configuration"""
    model_config = SettingsConfigDict(
        env_prefix="MBUS_SIM_",
        env_nested_delimiter="__",
    )

    server: ServerConfig = ServerConfig()
    device: DeviceConfig = DeviceConfig()
    client: ClientConfig = ClientConfig()
    monitoring: MonitoringConfig = MonitoringConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # MBUS_SIM_* variables win over values read from a config file
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @classmethod
    def load_from_file(cls, config_path: str) -> "Config":
        """
        Load configuration from YAML or JSON file.

        Args:
            config_path: Path to config file (*.yaml, *.yml, or *.json)

        Returns:
            Config instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        path = Path(config_path)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(path, 'r', encoding='utf-8') as f:
            if path.suffix in ['.yaml', '.yml']:
                data = yaml.safe_load(f)
            elif path.suffix == '.json':
                data = json.load(f)
            else:
                raise ValueError(f"Unsupported config format: {path.suffix}")

        return cls(**(data or {}))


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from file or use defaults.

    Search order:
    1. Provided config_path
    2. Environment variable MBUS_SIM_CONFIG
    3. config.yaml in current directory
    4. Built-in defaults (still subject to MBUS_SIM_* overrides)

    Args:
        config_path: Optional explicit config path

    Returns:
        Config instance
    """
    if config_path:
        return Config.load_from_file(config_path)

    env_config = os.getenv("MBUS_SIM_CONFIG")
    if env_config and Path(env_config).exists():
        return Config.load_from_file(env_config)

    if Path("config.yaml").exists():
        return Config.load_from_file("config.yaml")

    return Config()
