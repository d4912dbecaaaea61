"""
load the config from config.yaml and environment variables
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any


class Config:
    """Configuration loader that reads from config.yaml and environment variables."""
    
    def __init__(self, config_path: str = None):
        """Initialize configuration loader.
        
        Args:
            config_path: Path to config.yaml file. If None, looks for config.yaml 
                        in the same directory as this module.
        """
        if config_path is None:
            config_path = Path(__file__).parent / "config.yaml"
        
        self.config_path = Path(config_path)
        self._config = self._load_config()
    
    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file and override with environment variables."""
        try:
            with open(self.config_path, 'r') as f:
                config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")
        
        return self._apply_env_overrides(config)
    
    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration."""
        env_mappings = {
            'WEBLINK_USER_AGENT': (('opener', 'user_agent'), str),
            'WEBLINK_TIMEOUT': (('opener', 'timeout'), float),
            'WEBLINK_FOLLOW_REDIRECTS': (('opener', 'follow_redirects'), bool),
            'WEBLINK_MAX_REDIRECTS': (('opener', 'max_redirects'), int),
            'WEBLINK_CHUNK_SIZE': (('opener', 'chunk_size'), int),
            'WEBLINK_DEFAULT_MIME_TYPE': (('upload', 'default_mime_type'), str),
            'LOG_LEVEL': (('logging', 'level'), str),
            'LOG_JSON': (('logging', 'json'), bool),
        }
        
        for env_var, (config_path, value_type) in env_mappings.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                current = config
                for key in config_path[:-1]:
                    if not isinstance(current.get(key), dict):
                        current[key] = {}
                    current = current[key]
                
                current[config_path[-1]] = self._convert_env_value(env_var, env_value, value_type)
        
        return config
    
    def _convert_env_value(self, env_var: str, value: str, value_type: type):
        """Convert an environment variable string to the type its setting expects."""
        if value_type is bool:
            if value.lower() in ('true', '1', 'yes'):
                return True
            if value.lower() in ('false', '0', 'no'):
                return False
            raise ValueError(f"Invalid boolean for {env_var}: {value!r}")
        
        try:
            return value_type(value)
        except ValueError:
            raise ValueError(f"Invalid value for {env_var}: {value!r}")
    
    def get(self, *keys, default=None):
        """Get configuration value by walking nested keys.
        
        Args:
            *keys: Configuration keys (e.g., 'opener', 'timeout')
            default: Default value if key not found
            
        Returns:
            Configuration value or default
        """
        current = self._config
        for key in keys:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current
    
    @property
    def opener(self) -> Dict[str, Any]:
        """Get stream opener configuration."""
        return self.get('opener', default={})
    
    @property
    def upload(self) -> Dict[str, Any]:
        """Get file upload configuration."""
        return self.get('upload', default={})
    
    @property
    def logging(self) -> Dict[str, Any]:
        """Get logging configuration."""
        return self.get('logging', default={})


# Global configuration instance
config = Config()
