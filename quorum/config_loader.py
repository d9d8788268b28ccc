"""Engine configuration loader.

Loads EngineConfig from a TOML file with an ``[engine]`` table and an
optional ``[consensus]`` table (with ``[consensus.expert_weights]``).
"""

from __future__ import annotations

import tomllib
from pathlib import Path

from quorum.schemas.config import EngineConfig
from quorum.schemas.consensus import ConsensusAlgorithm, ConsensusOptions
from quorum.schemas.feedback import ExpertiseLevel

# Default config directory inside the quorum package
_CONFIG_DIR = Path(__file__).parent / "config"


def default_config_path() -> Path:
    return _CONFIG_DIR / "defaults.toml"


def load_engine_config(config_path: Path | None = None) -> EngineConfig:
    """Load engine settings from a TOML file.

    Args:
        config_path: Path to a TOML file. Defaults to quorum/config/defaults.toml.

    Returns:
        EngineConfig with values from the file; missing keys keep their defaults.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the TOML structure or a value is invalid.
    """
    path = config_path or default_config_path()
    if not path.exists():
        raise FileNotFoundError(f"Engine config not found: {path}")

    with open(path, "rb") as f:
        try:
            raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {path}: {e}") from e

    engine_section = raw.get("engine", {})
    consensus_section = dict(raw.get("consensus", {}))
    if not isinstance(engine_section, dict):
        raise ValueError(f"[engine] must be a table in {path}")

    # Parse algorithm and expertise weights from strings
    try:
        if "algorithm" in consensus_section:
            consensus_section["algorithm"] = ConsensusAlgorithm(consensus_section["algorithm"])
        weights = consensus_section.pop("expert_weights", None)
        if weights is not None:
            consensus_section["expert_weights"] = {
                ExpertiseLevel(level): float(value) for level, value in weights.items()
            }
        consensus = ConsensusOptions(**consensus_section)
        return EngineConfig(**engine_section, consensus=consensus)
    except ValueError as e:
        raise ValueError(f"Invalid engine config in {path}: {e}") from e
