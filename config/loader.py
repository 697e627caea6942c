"""
Configuration loader for YAML files
"""
import yaml
import logging
from pathlib import Path

from smc_fvg.errors import ValidationError
from .models import AppConfig, BacktestConfig, StrategyParams

logger = logging.getLogger(__name__)


class ConfigLoader:
    """Loads and saves configuration from YAML files"""

    def __init__(self, config_path: str = "config/smc_fvg.yaml"):
        self.config_path = Path(config_path)
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> AppConfig:
        """Load configuration from YAML file"""
        if not self.config_path.exists():
            logger.info(f"Config file not found at {self.config_path}, creating default")
            return self._create_default_config()

        with open(self.config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)

        if not data:
            logger.warning("Empty config file, using defaults")
            return AppConfig()

        strategy_id = data.get('strategy_id', 'smc_liquidity_fvg')
        backtest_data = dict(data.get('backtest') or {})
        backtest_data.setdefault('symbol', 'BTCUSDT')
        # The backtest section runs the app-level strategy unless it names one
        if 'strategy_id' not in backtest_data and 'strategyId' not in backtest_data:
            backtest_data['strategy_id'] = strategy_id

        config = AppConfig(
            log_level=data.get('log_level', 'INFO'),
            log_file=data.get('log_file'),
            backtest_concurrent_limit=data.get('backtest_concurrent_limit', 2),
            bar_buffer_size=data.get('bar_buffer_size', 500),
            strategy_id=strategy_id,
            strategy=StrategyParams.from_dict(data.get('strategy')),
            backtest=BacktestConfig.from_dict(backtest_data),
        )

        errors = config.validate()
        if errors:
            logger.error(f"Configuration validation errors: {errors}")
            raise ValidationError(errors)

        logger.info(f"Loaded configuration from {self.config_path} (strategy={config.strategy_id})")
        return config

    def save(self, config: AppConfig) -> bool:
        """Save configuration to YAML file"""
        errors = config.validate()
        if errors:
            logger.error(f"Cannot save invalid configuration: {errors}")
            return False

        backtest = config.backtest.to_dict()
        # Strategy params are stored once, at the top level
        backtest.pop('params', None)

        data = {
            'log_level': config.log_level,
            'log_file': config.log_file,
            'backtest_concurrent_limit': config.backtest_concurrent_limit,
            'bar_buffer_size': config.bar_buffer_size,
            'strategy_id': config.strategy_id,
            'strategy': config.strategy.to_dict(),
            'backtest': backtest,
        }

        try:
            with open(self.config_path, 'w', encoding='utf-8') as f:
                yaml.dump(data, f, default_flow_style=False, sort_keys=False, indent=2)
        except OSError as e:
            logger.error(f"Failed to save config to {self.config_path}: {e}")
            return False

        logger.info(f"Configuration saved to {self.config_path}")
        return True

    def _create_default_config(self) -> AppConfig:
        """Create default configuration"""
        config = AppConfig()

        # Save default config
        self.save(config)

        return config


def load_config(config_path: str = "config/smc_fvg.yaml") -> AppConfig:
    """Convenience function to load configuration"""
    loader = ConfigLoader(config_path)
    return loader.load()


def save_config(config: AppConfig, config_path: str = "config/smc_fvg.yaml") -> bool:
    """Convenience function to save configuration"""
    loader = ConfigLoader(config_path)
    return loader.save(config)
