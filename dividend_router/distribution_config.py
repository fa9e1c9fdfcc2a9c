"""
Distribution Config

Loads distribution_config.yaml over built-in defaults. Secrets (signing key,
RPC URL, Moralis API key) come from the environment / .env file.
"""

import os
from dataclasses import dataclass, field, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger

from .errors import ConfigError
from .units import parse_units

NATIVE_TOKEN = "0x0000000000000000000000000000000000000000"
PAXG_ETHEREUM = "0x45804880De22913dAFE09f4980848ECE6EcbAf78"

DEFAULT_ORDER_HOSTS = [
    "https://dln.debridge.finance/v1.0/dln/order/create-tx",
    "https://api.dln.trade/v1.0/dln/order/create-tx",
]

DEFAULT_SKIP_PATTERNS = ["pancake", "router", "lp", "liquidity", "burn", "dead"]

# Keys read from the environment
ENV_KEYS = {
    'private_key': 'BNB_PRIVATE_KEY',
    'rpc_url': 'BSC_RPC_URL',
    'moralis_api_key': 'MORALIS_API_KEY',
    'token_address': 'BSC_TOKEN_ADDRESS',
}


@dataclass
class DistributionConfig:
    """Runtime settings for one process"""
    # Chains and assets
    src_chain_id: str = "56"
    dst_chain_id: str = "1"
    src_token: str = NATIVE_TOKEN
    dst_token: str = PAXG_ETHEREUM
    native_decimals: int = 18

    # Order routing
    order_hosts: List[str] = field(default_factory=lambda: list(DEFAULT_ORDER_HOSTS))
    max_attempts_per_host: int = 3
    backoff_base_seconds: float = 1.0
    request_timeout_seconds: float = 30.0
    receipt_timeout_seconds: float = 180.0
    priority_level: str = "normal"

    # Cycle thresholds
    min_total_balance: Decimal = Decimal("1.0")
    min_per_order: Decimal = Decimal("0.006")
    transfer_fraction: Decimal = Decimal("0.95")

    # Scheduling
    concurrency: int = 3
    batch_delay_seconds: float = 2.0

    # Holder source
    holder_limit: int = 100
    holder_max_fetch: int = 150
    holder_page_size: int = 100
    holder_page_delay_seconds: float = 1.0
    holder_chain: str = "0x38"
    skip_addresses: List[str] = field(default_factory=list)
    skip_label_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_SKIP_PATTERNS))

    # Runner
    interval_seconds: int = 3600
    history_db_path: str = "distribution_history.db"
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Secrets (environment only)
    private_key: Optional[str] = field(default=None, repr=False)
    rpc_url: Optional[str] = None
    moralis_api_key: Optional[str] = field(default=None, repr=False)
    token_address: Optional[str] = None

    @property
    def min_per_order_base_units(self) -> int:
        return parse_units(self.min_per_order, self.native_decimals)

    def validate(self):
        """Raise ConfigError on values the engine cannot work with"""
        if not self.order_hosts:
            raise ConfigError("order_hosts must list at least one host")
        if self.max_attempts_per_host < 1:
            raise ConfigError("max_attempts_per_host must be >= 1")
        if self.concurrency < 1:
            raise ConfigError("concurrency must be >= 1")
        if self.batch_delay_seconds < 0 or self.backoff_base_seconds < 0:
            raise ConfigError("delays must be non-negative")
        if not (Decimal(0) < self.transfer_fraction <= Decimal(1)):
            raise ConfigError(f"transfer_fraction must be in (0, 1], got {self.transfer_fraction}")
        if self.min_per_order < 0 or self.min_total_balance < 0:
            raise ConfigError("minimum amounts must be non-negative")

    def require_secrets(self, *names: str):
        """Raise ConfigError if any named secret is missing"""
        missing = [ENV_KEYS.get(n, n) for n in names if not getattr(self, n)]
        if missing:
            raise ConfigError(f"Missing environment variables: {', '.join(missing)}")


_DECIMAL_FIELDS = {'min_total_balance', 'min_per_order', 'transfer_fraction'}
_INT_FIELDS = {
    'native_decimals', 'max_attempts_per_host', 'concurrency', 'interval_seconds',
    'holder_limit', 'holder_max_fetch', 'holder_page_size',
}
_FLOAT_FIELDS = {
    'backoff_base_seconds', 'request_timeout_seconds', 'receipt_timeout_seconds',
    'batch_delay_seconds', 'holder_page_delay_seconds',
}

# Nested YAML sections flattened into DistributionConfig fields
_SECTIONS = {
    'chains': {
        'src_chain_id': 'src_chain_id',
        'dst_chain_id': 'dst_chain_id',
        'src_token': 'src_token',
        'dst_token': 'dst_token',
        'native_decimals': 'native_decimals',
    },
    'order_routing': {
        'hosts': 'order_hosts',
        'max_attempts_per_host': 'max_attempts_per_host',
        'backoff_base_seconds': 'backoff_base_seconds',
        'request_timeout_seconds': 'request_timeout_seconds',
        'receipt_timeout_seconds': 'receipt_timeout_seconds',
        'priority_level': 'priority_level',
    },
    'thresholds': {
        'min_total_balance': 'min_total_balance',
        'min_per_order': 'min_per_order',
        'transfer_fraction': 'transfer_fraction',
    },
    'scheduling': {
        'concurrency': 'concurrency',
        'batch_delay_seconds': 'batch_delay_seconds',
        'interval_seconds': 'interval_seconds',
    },
    'holders': {
        'limit': 'holder_limit',
        'max_fetch': 'holder_max_fetch',
        'page_size': 'holder_page_size',
        'page_delay_seconds': 'holder_page_delay_seconds',
        'chain': 'holder_chain',
        'skip_addresses': 'skip_addresses',
        'skip_label_patterns': 'skip_label_patterns',
    },
    'history': {
        'db_path': 'history_db_path',
    },
    'logging': {
        'level': 'log_level',
        'file': 'log_file',
    },
}


def _flatten(raw: Dict) -> Dict:
    values = {}
    for section, mapping in _SECTIONS.items():
        section_data = raw.get(section) or {}
        if not isinstance(section_data, dict):
            raise ConfigError(f"Section '{section}' must be a mapping")
        for key, value in section_data.items():
            if key not in mapping:
                logger.warning(f"Unknown config key {section}.{key}, ignoring")
                continue
            values[mapping[key]] = value
    return values


def load_config(
    config_path: Optional[str] = "distribution_config.yaml",
    env_file: Optional[str] = None
) -> DistributionConfig:
    """
    Build a DistributionConfig from YAML + environment

    Args:
        config_path: YAML file; a missing file means defaults only
        env_file: Optional .env path (default lookup otherwise)

    Returns:
        Validated DistributionConfig
    """
    load_dotenv(env_file)

    values: Dict = {}
    if config_path:
        config_file = Path(config_path)
        if config_file.exists():
            try:
                with open(config_file, 'r', encoding='utf-8') as f:
                    raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Cannot parse {config_file}: {e}") from e
            if not isinstance(raw, dict):
                raise ConfigError(f"{config_file} must contain a mapping")
            values = _flatten(raw)
            logger.info(f"Loaded config from {config_file}")
        else:
            logger.warning(f"Config file {config_file} not found, using defaults")

    for name in _DECIMAL_FIELDS & values.keys():
        try:
            values[name] = Decimal(str(values[name]))
        except InvalidOperation as e:
            raise ConfigError(f"{name} must be a number, got {values[name]!r}") from e

    for names, cast in ((_INT_FIELDS, int), (_FLOAT_FIELDS, float)):
        for name in names & values.keys():
            if isinstance(values[name], bool):
                raise ConfigError(f"{name} must be a number, got {values[name]!r}")
            try:
                values[name] = cast(values[name])
            except (TypeError, ValueError) as e:
                raise ConfigError(f"{name} must be a number, got {values[name]!r}") from e

    for name, env_key in ENV_KEYS.items():
        env_value = os.getenv(env_key)
        if env_value:
            values[name] = env_value

    skip = values.get('skip_addresses')
    if isinstance(skip, str):
        values['skip_addresses'] = [a for a in skip.split(',') if a.strip()]
    env_skip = os.getenv('SKIP_ADDRESSES')
    if env_skip:
        values.setdefault('skip_addresses', [])
        values['skip_addresses'] = list(values['skip_addresses']) + [
            a for a in env_skip.split(',') if a.strip()
        ]
    if 'skip_addresses' in values:
        values['skip_addresses'] = [a.strip().lower() for a in values['skip_addresses']]

    known = {f.name for f in fields(DistributionConfig)}
    config = DistributionConfig(**{k: v for k, v in values.items() if k in known})
    config.validate()
    return config
