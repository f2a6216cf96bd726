"""
Configuration management and loading.

Reads balance and analysis thresholds from a YAML file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Set

import yaml

from token_ledger.core.balance import BalanceThresholds
from token_ledger.core.trends import AnalysisThresholds


@dataclass(frozen=True)
class LedgerConfig:
    """Complete ledger configuration."""
    balance: BalanceThresholds = field(default_factory=BalanceThresholds)
    analysis: AnalysisThresholds = field(default_factory=AnalysisThresholds)
    consumption_stable_band: float = 10.0

    def __post_init__(self):
        """Validate the consumption band is positive."""
        if self.consumption_stable_band <= 0:
            raise ValueError("consumption.stable_band must be > 0")


DEFAULT_CONFIG = LedgerConfig()

_BALANCE_KEYS = {"warning_below", "critical_below"}
_ANALYSIS_FLOAT_KEYS = {
    "anomaly_threshold",
    "medium_severity_threshold",
    "high_severity_threshold",
    "trend_change_threshold",
    "rate_deviation_threshold",
    "overall_trend_threshold",
}
_ANALYSIS_INT_KEYS = {
    "min_receipts_for_anomalies",
    "min_receipts_for_seasonal",
    "recent_anomaly_days",
}
_CONSUMPTION_KEYS = {"stable_band"}


def load_ledger_config(path: str) -> LedgerConfig:
    """Load and validate ledger configuration from a YAML file.

    Every section is optional; missing values keep their defaults. Unknown
    keys are rejected so that typos never silently fall back to defaults.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated LedgerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Ledger config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {'balance', 'analysis', 'consumption'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    balance_data = _section(raw_config, 'balance', _BALANCE_KEYS)
    analysis_data = _section(raw_config, 'analysis', _ANALYSIS_FLOAT_KEYS | _ANALYSIS_INT_KEYS)
    consumption_data = _section(raw_config, 'consumption', _CONSUMPTION_KEYS)

    balance_kwargs = {
        key: _number(value, f"balance.{key}") for key, value in balance_data.items()
    }
    analysis_kwargs: Dict[str, Any] = {}
    for key, value in analysis_data.items():
        if key in _ANALYSIS_INT_KEYS:
            analysis_kwargs[key] = _integer(value, f"analysis.{key}")
        else:
            analysis_kwargs[key] = _number(value, f"analysis.{key}")

    try:
        balance = BalanceThresholds(**balance_kwargs)
        analysis = AnalysisThresholds(**analysis_kwargs)
    except ValueError as e:
        raise ValueError(f"Invalid thresholds in {path}: {e}")

    stable_band = DEFAULT_CONFIG.consumption_stable_band
    if 'stable_band' in consumption_data:
        stable_band = _number(consumption_data['stable_band'], "consumption.stable_band")

    return LedgerConfig(
        balance=balance,
        analysis=analysis,
        consumption_stable_band=stable_band,
    )


def _section(raw_config: Dict, name: str, allowed_keys: Set[str]) -> Dict:
    """Extract an optional section and reject unknown keys in it.

    Raises:
        ValueError: If the section is not a mapping or has unknown keys
    """
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return data


def _number(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{path}' must be a number")
    return float(value)


def _integer(value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{path}' must be an integer")
    return value
