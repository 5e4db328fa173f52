import os
import yaml
import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from bech32 import bech32_decode, bech32_encode

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9300
DEFAULT_NODE_URL = 'http://127.0.0.1:1317'
DEFAULT_QUERY_TIMEOUT = 10.0
DEFAULT_LIMIT = 1000
DEFAULT_PREFIX = 'umee'
LOG_LEVELS = ('debug', 'info', 'warning', 'error', 'critical')


@dataclass(frozen=True)
class DenomOverrides:
    symbol: str = ''
    coefficient: Optional[float] = None
    exponent: Optional[int] = None


@dataclass(frozen=True)
class Bech32Prefixes:
    account: str
    account_pubkey: str
    validator: str
    validator_pubkey: str
    consensus_node: str
    consensus_node_pubkey: str

    @classmethod
    def from_base(cls, prefix: str, **overrides: Optional[str]) -> 'Bech32Prefixes':
        """Derive every prefix kind from the chain's base prefix.

        A non-empty override replaces the derived value for that kind,
        e.g. ``validator='umeevaloper'``.
        """
        derived = {
            'account': prefix,
            'account_pubkey': prefix + 'pub',
            'validator': prefix + 'valoper',
            'validator_pubkey': prefix + 'valoperpub',
            'consensus_node': prefix + 'valcons',
            'consensus_node_pubkey': prefix + 'valconspub',
        }
        for kind, value in overrides.items():
            if kind not in derived:
                raise ConfigError(f"unknown bech32 prefix kind: {kind}")
            if value:
                derived[kind] = value
        return cls(**derived)

    def decode(self, address: str, kind: str) -> List[int]:
        """Check that ``address`` is valid bech32 under the ``kind`` prefix.

        Returns the 5-bit data words; ValueError otherwise.
        """
        hrp, data = bech32_decode(address)
        if hrp is None:
            raise ValueError(f"{address} is not a valid bech32 address")
        expected = getattr(self, kind)
        if hrp != expected:
            raise ValueError(f"{address} does not carry the {kind} prefix {expected}")
        return data

    def operator_account(self, valoper: str) -> str:
        """Account address that operates the validator ``valoper``."""
        return bech32_encode(self.account, self.decode(valoper, 'validator'))


@dataclass
class Settings:
    listen_address: str = '0.0.0.0'
    port: int = DEFAULT_PORT
    node_url: str = DEFAULT_NODE_URL
    query_timeout: float = DEFAULT_QUERY_TIMEOUT
    limit: int = DEFAULT_LIMIT
    log_level: str = 'info'
    json_logs: bool = False


def parse_coefficient(value: Any) -> Optional[float]:
    if value is None or value == '':
        return None
    try:
        coefficient = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"denom coefficient must be a number, got {value!r}")
    if coefficient <= 0:
        raise ConfigError(f"denom coefficient must be positive, got {value!r}")
    return coefficient


def parse_exponent(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        exponent = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"denom exponent must be an integer, got {value!r}")
    if exponent < 0:
        raise ConfigError(f"denom exponent must not be negative, got {value!r}")
    return exponent


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def _as_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}")


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ('true', 'yes', 'on', '1'):
        return True
    if isinstance(value, str) and value.strip().lower() in ('false', 'no', 'off', '0', ''):
        return False
    if isinstance(value, int):
        return bool(value)
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def parse_listen_address(value: str):
    """Split ``host:port`` (host may be empty, as in ``:9300``)."""
    host, sep, port = value.rpartition(':')
    if not sep:
        raise ConfigError(f"listen address must be host:port, got {value!r}")
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigError(f"listen port must be an integer, got {port!r}")
    return host or '0.0.0.0', port_number


class Config:
    def __init__(self, data: Optional[Dict[str, Any]] = None):
        data = data or {}
        settings = data.get('settings') or {}
        node = data.get('node') or {}
        denom = data.get('denom') or {}
        bech32 = data.get('bech32') or {}

        self.settings = Settings(
            listen_address=settings.get('listen_address', '0.0.0.0'),
            port=_as_int(settings.get('port', DEFAULT_PORT), 'port'),
            node_url=node.get('url', DEFAULT_NODE_URL),
            query_timeout=_as_float(node.get('query_timeout', DEFAULT_QUERY_TIMEOUT), 'query timeout'),
            limit=_as_int(node.get('limit', DEFAULT_LIMIT), 'pagination limit'),
            log_level=str(settings.get('log_level', 'info')).lower(),
            json_logs=_as_bool(settings.get('json_logs', False), 'json_logs'),
        )

        self.denom = DenomOverrides(
            symbol=denom.get('symbol') or '',
            coefficient=parse_coefficient(denom.get('coefficient')),
            exponent=parse_exponent(denom.get('exponent')),
        )

        self.bech32_prefix = bech32.get('prefix', DEFAULT_PREFIX)
        self.prefix_overrides = {
            kind: value for kind, value in bech32.items() if kind != 'prefix'
        }
        self.prefixes = Bech32Prefixes.from_base(self.bech32_prefix, **self.prefix_overrides)
        self.validate()

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        logger.info(f"Loading config from {config_path}")
        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"could not read config file {config_path}: {e}")
        except yaml.YAMLError as e:
            raise ConfigError(f"could not parse config file {config_path}: {e}")
        if data is not None and not isinstance(data, dict):
            raise ConfigError(f"config file {config_path} must contain a mapping")
        return cls(data)

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> 'Config':
        """Load from an explicit path, CONFIG_PATH, or fall back to defaults."""
        path = config_path or os.getenv('CONFIG_PATH')
        if path:
            return cls.from_file(path)
        logger.info("No config file given, using defaults and flags")
        return cls()

    def apply_args(self, args) -> 'Config':
        """Overlay command-line flags that were given on top of file values."""
        if getattr(args, 'listen_address', None):
            host, port = parse_listen_address(args.listen_address)
            self.settings.listen_address = host
            self.settings.port = port
        if getattr(args, 'node', None):
            self.settings.node_url = args.node
        if getattr(args, 'query_timeout', None) is not None:
            self.settings.query_timeout = float(args.query_timeout)
        if getattr(args, 'limit', None) is not None:
            self.settings.limit = int(args.limit)
        if getattr(args, 'log_level', None):
            self.settings.log_level = args.log_level.lower()
        if getattr(args, 'json', False):
            self.settings.json_logs = True

        denom = self.denom
        if getattr(args, 'denom', None):
            denom = replace(denom, symbol=args.denom)
        if getattr(args, 'denom_coefficient', None) is not None:
            denom = replace(denom, coefficient=parse_coefficient(args.denom_coefficient))
        if getattr(args, 'denom_exponent', None) is not None:
            denom = replace(denom, exponent=parse_exponent(args.denom_exponent))
        self.denom = denom

        if getattr(args, 'bech_prefix', None):
            self.bech32_prefix = args.bech_prefix
        for kind in ('account', 'account_pubkey', 'validator', 'validator_pubkey',
                     'consensus_node', 'consensus_node_pubkey'):
            value = getattr(args, f'bech_{kind}_prefix', None)
            if value:
                self.prefix_overrides[kind] = value
        self.prefixes = Bech32Prefixes.from_base(self.bech32_prefix, **self.prefix_overrides)

        self.validate()
        return self

    def validate(self):
        if self.settings.log_level not in LOG_LEVELS:
            raise ConfigError(f"unknown log level: {self.settings.log_level}")
        if self.settings.query_timeout <= 0:
            raise ConfigError("query timeout must be positive")
        if self.settings.limit <= 0:
            raise ConfigError("pagination limit must be positive")
