"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
import json

from dotenv import load_dotenv

from filego.file import DEFAULT_CHUNK_SIZE
from filego.node import NodeConfig


def _parse_peers(value: str) -> List[str]:
    return [p.strip() for p in value.split(',') if p.strip()]


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('true', '1', 'yes')


# Config field -> (environment variable, parser)
ENV_VARS: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    'host': ('FILEGO_HOST', str),
    'p2p_port': ('FILEGO_P2P_PORT', int),
    'api_port': ('FILEGO_API_PORT', int),
    'node_id': ('FILEGO_NODE_ID', str),
    'data_dir': ('FILEGO_DATA_DIR', Path),
    'chunk_size': ('FILEGO_CHUNK_SIZE', int),
    'peers': ('FILEGO_PEERS', _parse_peers),
    'discovery': ('FILEGO_DISCOVERY', _parse_bool),
    'discovery_interval': ('FILEGO_DISCOVERY_INTERVAL', float),
    'max_peers': ('FILEGO_MAX_PEERS', int),
    'dial_timeout': ('FILEGO_DIAL_TIMEOUT', float),
    'log_level': ('FILEGO_LOG_LEVEL', str),
}


def env_overrides() -> Dict[str, Any]:
    """
    Parsed values of the FILEGO_* variables that are actually set.

    A .env file in the working directory is loaded first. Empty variables
    count as unset.
    """
    load_dotenv()

    overrides = {}
    for key, (name, parse) in ENV_VARS.items():
        value = os.getenv(name)
        if value:
            overrides[key] = parse(value)
    return overrides


@dataclass
class Config:
    """
    FileGo Node Configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (FILEGO_*)
    2. Config file (config.json)
    3. Default values
    """
    # Network
    host: str = '0.0.0.0'
    p2p_port: int = 9000
    api_port: int = 8080
    node_id: str = ''

    # Storage
    data_dir: Path = field(default_factory=lambda: Path('./data'))
    chunk_size: int = DEFAULT_CHUNK_SIZE

    # Peers
    peers: List[str] = field(default_factory=list)
    discovery: bool = True
    discovery_interval: float = 30.0
    max_peers: int = 50

    # Timeouts (seconds)
    dial_timeout: float = 5.0

    # Logging
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        config = cls()
        for key, value in env_overrides().items():
            setattr(config, key, value)
        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        # Network
        config.host = data.get('host', config.host)
        config.p2p_port = data.get('p2p_port', config.p2p_port)
        config.api_port = data.get('api_port', config.api_port)
        config.node_id = data.get('node_id', config.node_id)

        # Storage
        if 'data_dir' in data:
            config.data_dir = Path(data['data_dir'])
        config.chunk_size = data.get('chunk_size', config.chunk_size)

        # Peers
        config.peers = list(data.get('peers', []))
        config.discovery = data.get('discovery', config.discovery)
        config.discovery_interval = data.get('discovery_interval', config.discovery_interval)
        config.max_peers = data.get('max_peers', config.max_peers)

        # Timeouts
        config.dial_timeout = data.get('dial_timeout', config.dial_timeout)

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'p2p_port': self.p2p_port,
            'api_port': self.api_port,
            'node_id': self.node_id,
            'data_dir': str(self.data_dir),
            'chunk_size': self.chunk_size,
            'peers': list(self.peers),
            'discovery': self.discovery,
            'discovery_interval': self.discovery_interval,
            'max_peers': self.max_peers,
            'dial_timeout': self.dial_timeout,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def to_node_config(self) -> NodeConfig:
        """Settings the node itself needs."""
        return NodeConfig(
            host=self.host,
            p2p_port=self.p2p_port,
            node_id=self.node_id,
            max_peers=self.max_peers,
            dial_timeout=self.dial_timeout,
            data_dir=self.data_dir,
            chunk_size=self.chunk_size,
            peers=list(self.peers),
            discovery=self.discovery,
            discovery_interval=self.discovery_interval,
        )


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Every environment variable that is set overrides the file, even when it
    holds the default value. Peers are additive.
    """
    # Start with defaults
    config = Config()

    # Load from file if provided
    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    # Override with environment variables
    for key, value in env_overrides().items():
        if key == 'peers':
            for peer in value:
                if peer not in config.peers:
                    config.peers.append(peer)
        else:
            setattr(config, key, value)

    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "0.0.0.0",
  "p2p_port": 9000,
  "api_port": 8080,
  "data_dir": "./data",
  "chunk_size": 65536,
  "peers": ["192.168.1.100:9000"],
  "discovery": true,
  "discovery_interval": 30.0,
  "dial_timeout": 5.0,
  "log_level": "INFO"
}
"""
