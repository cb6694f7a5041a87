"""Configuration management module"""

import logging
import yaml
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple
from dataclasses import dataclass, field, fields, replace

from utils.exceptions import ConfigError


@dataclass
class ServerConfig:
    host: str
    port: int
    debug: bool
    secret_key: str
    max_buffer_size: int


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@dataclass
class OCRModelConfig:
    languages: List[str] = field(default_factory=lambda: ["en"])
    gpu: bool = True
    model_dir: Optional[str] = None
    allowlist: Optional[str] = None


@dataclass
class ExtractionConfig:
    roi_padding_ratio: float = 0.05
    roi_scale_factor: float = 2.0
    timeout_seconds: float = 2.0


@dataclass(frozen=True)
class NetworkRule:
    """카드 브랜드 prefix/길이 규칙"""
    name: str
    prefixes: Tuple[str, ...]
    lengths: Tuple[int, ...]

    def matches_prefix(self, number: str) -> bool:
        for prefix in self.prefixes:
            if '-' in prefix:
                low, high = prefix.split('-', 1)
                head = number[:len(low)]
                if len(head) == len(low) and int(low) <= int(head) <= int(high):
                    return True
            elif number.startswith(prefix):
                return True
        return False

    def matches(self, number: str) -> bool:
        return len(number) in self.lengths and self.matches_prefix(number)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NetworkRule":
        return cls(
            name=str(data['name']),
            prefixes=tuple(str(p) for p in data['prefixes']),
            lengths=tuple(int(n) for n in data['lengths']),
        )


DEFAULT_NETWORKS: Tuple[NetworkRule, ...] = (
    NetworkRule("visa", ("4",), (13, 16, 19)),
    NetworkRule("mastercard", ("51-55", "2221-2720"), (16,)),
    NetworkRule("amex", ("34", "37"), (15,)),
    NetworkRule("discover", ("6011", "644-649", "65"), (16, 19)),
    NetworkRule("diners", ("300-305", "36", "38"), (14,)),
    NetworkRule("jcb", ("3528-3589",), (16, 17, 18, 19)),
    NetworkRule("unionpay", ("62",), (16, 17, 18, 19)),
    NetworkRule("maestro", ("50", "56-69"), tuple(range(12, 20))),
)


# Host-facing option names accepted at session creation
_OVERRIDE_ALIASES = {
    'minObservationConfidence': 'min_observation_confidence',
    'requireExpiry': 'require_expiry',
    'sessionTimeoutSeconds': 'session_timeout_seconds',
    'supportedNetworks': 'supported_networks',
}


@dataclass(frozen=True)
class ScanConfig:
    min_observation_confidence: float = 0.3
    require_expiry: bool = False
    session_timeout_seconds: float = 30.0
    supported_networks: Tuple[NetworkRule, ...] = DEFAULT_NETWORKS

    def with_overrides(self, overrides: Optional[Mapping[str, Any]]) -> "ScanConfig":
        """Copy with per-session overrides (camelCase or snake_case keys)."""
        if not overrides:
            return self
        if not isinstance(overrides, Mapping):
            raise ConfigError(f"Scan options must be a mapping, got {type(overrides).__name__}")
        known = {f.name for f in fields(self)}
        changes: Dict[str, Any] = {}
        for key, value in overrides.items():
            name = _OVERRIDE_ALIASES.get(key, key)
            if name not in known:
                raise ConfigError(f"Unknown scan option: {key}")
            changes[name] = value
        try:
            if 'supported_networks' in changes:
                changes['supported_networks'] = tuple(
                    rule if isinstance(rule, NetworkRule) else NetworkRule.from_dict(rule)
                    for rule in changes['supported_networks']
                )
            for name in ('min_observation_confidence', 'session_timeout_seconds'):
                if name in changes:
                    changes[name] = float(changes[name])
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Invalid scan option: {e!r}") from e
        if 'require_expiry' in changes:
            changes['require_expiry'] = bool(changes['require_expiry'])
        return replace(self, **changes)


@dataclass
class PreviewConfig:
    mask_color: str = "#000000"
    mask_alpha: float = 0.6
    frame_color: str = "#007aff"
    jpeg_quality: int = 80


@dataclass
class FontConfig:
    paths: list = field(default_factory=list)
    size: int = 16


class Config:
    """Main configuration class"""

    def __init__(self, config_path: str = "config.yaml"):
        self._config_path = Path(config_path)
        self._data = self._load_config()

        # Initialize config objects
        self.server = self._init_server_config()
        self.logging = LoggingConfig(**self._data.get('logging', {}))
        self.ocr = OCRModelConfig(**self._data.get('ocr', {}))
        self.extraction = ExtractionConfig(**self._data.get('extraction', {}))
        self.scan = self._init_scan_config()
        self.preview = PreviewConfig(**self._data.get('preview', {}))
        self.fonts = FontConfig(**self._data.get('fonts', {}))

    def _load_config(self) -> Dict[str, Any]:
        """Load YAML configuration"""
        try:
            with open(self._config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config root must be a mapping: {self._config_path}")
        return data

    def _init_server_config(self) -> ServerConfig:
        try:
            return ServerConfig(**self._data['server'])
        except (KeyError, TypeError) as e:
            raise ConfigError(f"Invalid server section: {e}") from e

    def _init_scan_config(self) -> ScanConfig:
        data = dict(self._data.get('scan', {}))
        networks = data.pop('networks', None)
        try:
            scan = ScanConfig().with_overrides(data)
            if networks:
                scan = replace(scan, supported_networks=tuple(
                    NetworkRule.from_dict(rule) for rule in networks
                ))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Invalid scan section: {e}") from e
        return scan


def configure_logging(config: Optional[LoggingConfig] = None) -> None:
    """Configure the root logger for the application."""
    config = config or LoggingConfig()
    logging.basicConfig(level=config.level.upper(), format=config.format)
