"""Configuration management for book assignment runs."""
import tomllib
from pathlib import Path
from dataclasses import dataclass, field

# Default paths
ROOT = Path(__file__).resolve().parents[2]
CONFIG_PATH = ROOT / "config.toml"
WEIGHTS_PATH = ROOT / "artifacts" / "weights" / "rule_weights.json"

@dataclass
class AllocationConfig:
    target_arr: float = 2_000_000.0
    hard_cutoff_arr: float = 2_500_000.0
    arr_variance: float = 0.25
    account_variance: float = 0.15
    max_cre_per_rep: int = 3
    continuity_days: int = 90
    saturation_ratio: float = 2.0
    enforce_arr_cutoff: bool = True

    def preferred_min(self) -> float:
        return self.target_arr * (1.0 - self.arr_variance)

    def preferred_max(self) -> float:
        return self.target_arr * (1.0 + self.arr_variance)

@dataclass
class ThresholdConfig:
    tier1_concentration: int = 5
    tier2_concentration: int = 8
    regional_variance: float = 0.10
    cre_variance: float = 0.20
    atr_variance: float = 0.20
    tier_variance: float = 0.25
    renewal_variance: float = 0.25

@dataclass
class SuggestionConfig:
    batch_size: int = 50
    max_accounts_per_rep: int = 10
    output_dir: str = "reports/suggestions"

@dataclass
class AppConfig:
    allocation: AllocationConfig = field(default_factory=AllocationConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    suggestions: SuggestionConfig = field(default_factory=SuggestionConfig)

def load_config(path: Path = CONFIG_PATH) -> AppConfig:
    """Loads configuration from a TOML file."""
    if not path.exists():
        return AppConfig()

    try:
        with path.open("rb") as f:
            data = tomllib.load(f)

        return AppConfig(
            allocation=AllocationConfig(**data.get("allocation", {})),
            thresholds=ThresholdConfig(**data.get("thresholds", {})),
            suggestions=SuggestionConfig(**data.get("suggestions", {})),
        )
    except Exception as e:
        print(f"[WARN] Failed to load config from {path}: {e}. Using defaults.")
        return AppConfig()

# Global instance
config = load_config()
