"""
Configuration Manager for the liquidation bot
Loads configuration from YAML files with environment variable support
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from liquidator.core.errors import ConfigurationError


NATIVE_MINT = "So11111111111111111111111111111111111111112"
LIQUIDATION_WALLET_COUNT = 5

_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

BOT_SECTIONS = ("liquidation", "rounds")


@dataclass(frozen=True)
class RPCConfig:
    """HTTP JSON-RPC endpoint"""
    http_url: str
    timeout_s: float = 30.0


@dataclass(frozen=True)
class FeedConfig:
    """Transaction notification feed"""
    websocket_url: str
    commitment: str = "confirmed"
    reconnect_delay_s: float = 5.0


@dataclass(frozen=True)
class JupiterConfig:
    """Aggregator quote/swap endpoints"""
    api_key: str
    quote_url: str = "https://jupiter-swap-lb.solanatracker.io/jupiter/quote"
    swap_url: str = "https://jupiter-swap-lb.solanatracker.io/jupiter/swap"
    slippage_bps: int = 1000
    priority_fee_lamports: int = 150_000
    timeout_s: float = 30.0


@dataclass(frozen=True)
class TransactionConfig:
    """Transaction submission"""
    skip_preflight: bool = True
    confirmation_timeout_s: float = 90.0
    confirmation_poll_interval_s: float = 1.0


@dataclass(frozen=True)
class LiquidationConfig:
    """Detection thresholds, wallet pool and step sizing"""
    tracked_mint: str
    wallet_keys: Tuple[str, ...]
    native_mint: str = NATIVE_MINT
    min_buy_threshold_lamports: int = 69_000_000
    excluded_signers: Tuple[str, ...] = ()
    sell_fractions_bps: Tuple[int, int] = (5000, 4500)
    first_buy_range_lamports: Tuple[int, int] = (10_000_000, 15_000_000)
    follow_up_buy_range_lamports: Tuple[int, int] = (2_000_000, 5_000_000)
    step_delay_range_s: Tuple[float, float] = (1.0, 5.0)
    queue_capacity: int = 1
    dedupe_pending_signers: bool = False


@dataclass(frozen=True)
class RoundConfig:
    """Fixed-round volume bot"""
    wallet_keys: Tuple[str, ...]
    tracked_mint: str
    min_swap_lamports: int
    max_swap_lamports: int
    buys_per_wallet: int = 2
    sell_fraction_bps: int = 9000
    fee_reserve_lamports: int = 105_000
    pause_s: float = 2.0
    round_delay_s: float = 30.0
    priority_fee_lamports: int = 100_000
    native_mint: str = NATIVE_MINT


@dataclass(frozen=True)
class LogConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "json"
    output_file: Optional[str] = None


@dataclass(frozen=True)
class BotConfig:
    """Complete bot configuration"""
    rpc_config: RPCConfig
    feed_config: FeedConfig
    jupiter_config: JupiterConfig
    transaction_config: TransactionConfig
    log_config: LogConfig
    liquidation_config: Optional[LiquidationConfig] = None
    round_config: Optional[RoundConfig] = None


class ConfigurationManager:
    """Manages bot configuration from YAML files and environment variables"""

    def __init__(self, config_path: str):
        """
        Initialize configuration manager

        Args:
            config_path: Path to YAML configuration file
        """
        self.config_path = Path(config_path)
        self._config_data: Optional[Dict[str, Any]] = None
        self._bot_config: Optional[BotConfig] = None

    def load_config(self, bot_section: Optional[str] = None) -> BotConfig:
        """
        Load and validate configuration from file

        Args:
            bot_section: "liquidation" or "rounds" to load only that bot's
                section; the other one is neither substituted nor validated

        Returns:
            BotConfig: Validated configuration object

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigurationError: If config is invalid or an env var is missing
        """
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}"
            )

        try:
            with open(self.config_path, 'r') as f:
                raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in {self.config_path}: {e}",
                context={"path": str(self.config_path)}
            ) from e

        if not isinstance(raw_config, dict):
            raise ConfigurationError("Configuration root must be a mapping")

        if bot_section is not None:
            raw_config = self._select_bot_section(raw_config, bot_section)

        self._config_data = self._substitute_env_vars(raw_config)
        self._bot_config = self.parse_config(self._config_data)

        return self._bot_config

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key

        Args:
            key: Dot-notation key (e.g., "liquidation.tracked_mint")
            default: Default value if key not found
        """
        if self._config_data is None:
            raise RuntimeError("Configuration not loaded. Call load_config() first.")

        value = self._config_data
        for k in key.split('.'):
            if not isinstance(value, dict):
                return default
            value = value.get(k)
            if value is None:
                return default

        return value

    def _substitute_env_vars(self, config: Any) -> Any:
        """
        Recursively substitute ${VAR_NAME} patterns with environment values

        Supports both full-value and embedded substitution:
        - Full: "${API_KEY}" -> "abc123"
        - Embedded: "https://rpc/?key=${API_KEY}" -> "https://rpc/?key=abc123"
        - Default: "${EXCLUDED:-}" -> "" when EXCLUDED is unset
        """
        if isinstance(config, dict):
            return {k: self._substitute_env_vars(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            def replace_var(match):
                var_name, default = match.group(1), match.group(2)
                value = os.getenv(var_name, default)
                if value is None:
                    raise ConfigurationError(
                        f"Environment variable {var_name} not found",
                        context={"variable": var_name}
                    )
                return value

            return _ENV_PATTERN.sub(replace_var, config)
        else:
            return config

    @staticmethod
    def _select_bot_section(raw_config: Dict[str, Any], bot_section: str) -> Dict[str, Any]:
        """Drop the bot section that was not asked for"""
        if bot_section not in BOT_SECTIONS:
            raise ConfigurationError(f"Unknown bot section: {bot_section}")

        selected = {
            key: value for key, value in raw_config.items()
            if key not in BOT_SECTIONS or key == bot_section
        }

        # rounds fall back to the liquidation mint
        rounds = selected.get('rounds')
        if bot_section == 'rounds' and isinstance(rounds, dict) and not rounds.get('tracked_mint'):
            liquidation = raw_config.get('liquidation')
            if isinstance(liquidation, dict) and liquidation.get('tracked_mint'):
                selected['rounds'] = dict(rounds, tracked_mint=liquidation['tracked_mint'])

        return selected

    @classmethod
    def parse_config(cls, config: Dict[str, Any]) -> BotConfig:
        """
        Parse raw configuration into typed objects

        Raises:
            ConfigurationError: If a required value is missing or invalid
        """
        rpc_data = config.get('rpc') or {}
        rpc_config = RPCConfig(
            http_url=cls._require(rpc_data, 'http_url', 'rpc'),
            timeout_s=float(rpc_data.get('timeout_s', 30.0))
        )

        feed_data = config.get('feed') or {}
        feed_config = FeedConfig(
            websocket_url=cls._require(feed_data, 'websocket_url', 'feed'),
            commitment=feed_data.get('commitment', 'confirmed'),
            reconnect_delay_s=float(feed_data.get('reconnect_delay_s', 5.0))
        )

        jup_data = config.get('jupiter') or {}
        jupiter_config = JupiterConfig(
            api_key=cls._require(jup_data, 'api_key', 'jupiter'),
            quote_url=jup_data.get('quote_url', JupiterConfig.quote_url),
            swap_url=jup_data.get('swap_url', JupiterConfig.swap_url),
            slippage_bps=int(jup_data.get('slippage_bps', 1000)),
            priority_fee_lamports=int(jup_data.get('priority_fee_lamports', 150_000)),
            timeout_s=float(jup_data.get('timeout_s', 30.0))
        )

        tx_data = config.get('transactions') or {}
        transaction_config = TransactionConfig(
            skip_preflight=bool(tx_data.get('skip_preflight', True)),
            confirmation_timeout_s=float(tx_data.get('confirmation_timeout_s', 90.0)),
            confirmation_poll_interval_s=float(tx_data.get('confirmation_poll_interval_s', 1.0))
        )

        log_data = config.get('logging') or {}
        log_config = LogConfig(
            level=log_data.get('level', 'INFO'),
            format=log_data.get('format', 'json'),
            output_file=log_data.get('output_file')
        )

        liquidation_config = None
        if config.get('liquidation'):
            liquidation_config = cls._parse_liquidation(config['liquidation'])

        round_config = None
        if config.get('rounds'):
            default_mint = (config.get('liquidation') or {}).get('tracked_mint')
            round_config = cls._parse_rounds(config['rounds'], default_mint)

        return BotConfig(
            rpc_config=rpc_config,
            feed_config=feed_config,
            jupiter_config=jupiter_config,
            transaction_config=transaction_config,
            log_config=log_config,
            liquidation_config=liquidation_config,
            round_config=round_config
        )

    @classmethod
    def _parse_liquidation(cls, data: Dict[str, Any]) -> LiquidationConfig:
        tracked_mint = cls._require(data, 'tracked_mint', 'liquidation')
        native_mint = data.get('native_mint', NATIVE_MINT)
        if tracked_mint == native_mint:
            raise ConfigurationError("liquidation.tracked_mint must differ from native_mint")

        wallet_keys = tuple(cls._as_list(data.get('wallets')))
        if len(wallet_keys) != LIQUIDATION_WALLET_COUNT:
            raise ConfigurationError(
                f"liquidation.wallets must contain exactly {LIQUIDATION_WALLET_COUNT} keys, "
                f"got {len(wallet_keys)}"
            )

        try:
            sell_fractions = tuple(int(v) for v in data.get('sell_fractions_bps', (5000, 4500)))
        except (TypeError, ValueError):
            sell_fractions = ()
        if len(sell_fractions) != 2 or not all(0 < v <= 10_000 for v in sell_fractions):
            raise ConfigurationError("liquidation.sell_fractions_bps must be two values in (0, 10000]")

        queue_capacity = int(data.get('queue_capacity', 1))
        if queue_capacity < 1:
            raise ConfigurationError("liquidation.queue_capacity must be at least 1")

        return LiquidationConfig(
            tracked_mint=tracked_mint,
            wallet_keys=wallet_keys,
            native_mint=native_mint,
            min_buy_threshold_lamports=int(data.get('min_buy_threshold_lamports', 69_000_000)),
            excluded_signers=tuple(cls._as_list(data.get('excluded_signers'))),
            sell_fractions_bps=sell_fractions,
            first_buy_range_lamports=cls._int_range(
                data.get('first_buy_range_lamports', (10_000_000, 15_000_000)),
                'liquidation.first_buy_range_lamports'
            ),
            follow_up_buy_range_lamports=cls._int_range(
                data.get('follow_up_buy_range_lamports', (2_000_000, 5_000_000)),
                'liquidation.follow_up_buy_range_lamports'
            ),
            step_delay_range_s=cls._float_range(
                data.get('step_delay_range_s', (1.0, 5.0)),
                'liquidation.step_delay_range_s'
            ),
            queue_capacity=queue_capacity,
            dedupe_pending_signers=bool(data.get('dedupe_pending_signers', False))
        )

    @classmethod
    def _parse_rounds(cls, data: Dict[str, Any], default_mint: Optional[str] = None) -> RoundConfig:
        tracked_mint = data.get('tracked_mint') or default_mint
        if not tracked_mint:
            raise ConfigurationError(
                "Missing required configuration value: rounds.tracked_mint",
                context={"key": "rounds.tracked_mint"}
            )
        native_mint = data.get('native_mint', NATIVE_MINT)
        if tracked_mint == native_mint:
            raise ConfigurationError("rounds.tracked_mint must differ from native_mint")

        wallet_keys = tuple(cls._as_list(data.get('wallets')))
        if not wallet_keys:
            raise ConfigurationError("rounds.wallets must contain at least one key")

        min_swap, max_swap = cls._int_range(
            (cls._require(data, 'min_swap_lamports', 'rounds'),
             cls._require(data, 'max_swap_lamports', 'rounds')),
            'rounds.min_swap_lamports/max_swap_lamports'
        )

        return RoundConfig(
            wallet_keys=wallet_keys,
            tracked_mint=tracked_mint,
            min_swap_lamports=min_swap,
            max_swap_lamports=max_swap,
            buys_per_wallet=int(data.get('buys_per_wallet', 2)),
            sell_fraction_bps=int(data.get('sell_fraction_bps', 9000)),
            fee_reserve_lamports=int(data.get('fee_reserve_lamports', 105_000)),
            pause_s=float(data.get('pause_s', 2.0)),
            round_delay_s=float(data.get('round_delay_s', 30.0)),
            priority_fee_lamports=int(data.get('priority_fee_lamports', 100_000)),
            native_mint=native_mint
        )

    @staticmethod
    def _require(section: Dict[str, Any], key: str, section_name: str) -> Any:
        value = section.get(key)
        if value is None or value == "":
            raise ConfigurationError(
                f"Missing required configuration value: {section_name}.{key}",
                context={"key": f"{section_name}.{key}"}
            )
        return value

    @staticmethod
    def _as_list(value: Any) -> List[str]:
        """Accept a YAML list or a comma-separated string"""
        if value is None:
            return []
        if isinstance(value, str):
            items = value.split(',')
        else:
            items = list(value)
        return [str(item).strip() for item in items if str(item).strip()]

    @staticmethod
    def _int_range(value: Any, name: str) -> Tuple[int, int]:
        try:
            low, high = (int(v) for v in value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"{name} must be a [min, max] pair, got {value!r}") from e
        if low <= 0 or high <= low:
            raise ConfigurationError(f"{name} must satisfy 0 < min < max")
        return low, high

    @staticmethod
    def _float_range(value: Any, name: str) -> Tuple[float, float]:
        try:
            low, high = (float(v) for v in value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"{name} must be a [min, max] pair, got {value!r}") from e
        if low < 0 or high < low:
            raise ConfigurationError(f"{name} must satisfy 0 <= min <= max")
        return low, high
