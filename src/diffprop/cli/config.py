"""
Configuration file support for the diffprop CLI.

Supports YAML and JSON config files with CLI argument override.

Example (YAML):

    counts: data/counts.csv
    groups: data/groups.csv
    group_column: condition
    output: results/run1
    propd:
      alpha: 0.5
      permutations: 200
      cutoffs: [0.05, 0.35, 0.65, 0.95]
      active: theta_d
      fstat: true
      moderated: true
      seed: 42
    propr:
      metric: rho
      reference: clr
"""

import json
from argparse import Namespace
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from diffprop.propr import Metric
from diffprop.stats.fdr import DEFAULT_CUTOFFS
from diffprop.stats.theta import ThetaType


@dataclass
class PropdConfig:
    """Differential proportionality configuration."""
    alpha: Optional[float] = None
    permutations: int = 100
    weighted: bool = False
    cutoffs: List[float] = field(default_factory=lambda: list(DEFAULT_CUTOFFS))
    active: str = "theta_d"
    fstat: bool = False
    moderated: bool = False
    pval: float = 0.05
    seed: Optional[int] = None
    n_jobs: int = 1


@dataclass
class ProprConfig:
    """Proportionality configuration."""
    metric: str = "rho"
    reference: str = "clr"
    alpha: Optional[float] = None
    cutoff: Optional[float] = None


@dataclass
class ConfigSchema:
    """
    Complete configuration schema for the diffprop commands.

    Mirrors the CLI argument structure for consistency.
    """
    counts: Optional[Path] = None
    groups: Optional[Path] = None
    group_column: Optional[str] = None
    features_as_rows: bool = False
    output: Optional[Path] = None
    propd: PropdConfig = field(default_factory=PropdConfig)
    propr: ProprConfig = field(default_factory=ProprConfig)


# Top-level keys shared by both commands: config key -> argument name
_SHARED_KEYS = {
    f.name: f.name for f in fields(ConfigSchema) if f.name not in ('propd', 'propr')
}

_PATH_ARGS = {'counts', 'groups', 'output'}

# Command sections: config key -> argument name
_SECTION_KEYS = {
    'propd': {f.name: f.name for f in fields(PropdConfig)},
    'propr': {f.name: f.name for f in fields(ProprConfig)},
}

_SHORT_TO_LONG = {
    'c': 'counts',
    'g': 'groups',
    'o': 'output',
}


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Parameters:
        config_path: Path to config file (.yaml, .yml, or .json)

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is unsupported or invalid

    Examples:
        >>> config = load_config(Path("run.yaml"))
        >>> print(config['propd']['permutations'])
        200
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    try:
        with open(config_path, 'r') as f:
            if suffix in ('.yaml', '.yml'):
                config = yaml.safe_load(f)
            elif suffix == '.json':
                config = json.load(f)
            else:
                raise ValueError(
                    f"Unsupported config format: {suffix}. "
                    f"Use .yaml, .yml, or .json"
                )
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}") from e

    if config is None:
        return {}

    if not isinstance(config, dict):
        raise ValueError("Config file must contain a dictionary/mapping at top level")

    return config


def _merge_value(cli_value: Any, config_value: Any, arg_name: str, was_explicitly_set: bool) -> Any:
    """
    Merge a single config value with CLI argument.

    Rules:
    - CLI args ALWAYS override config if explicitly set
    - If CLI arg not set, use config value
    - If neither set, keep CLI default

    Parameters:
        cli_value: Value from CLI args (may be default)
        config_value: Value from config file
        arg_name: Name of argument (for debugging)
        was_explicitly_set: Whether CLI arg was explicitly provided by user

    Returns:
        Merged value
    """
    if was_explicitly_set:
        return cli_value

    if config_value is not None:
        return config_value

    return cli_value


def _explicit_args(cli_args: Optional[List[str]]) -> set:
    """Argument names given on the command line (long or short form)."""
    explicit = set()
    for arg in cli_args or []:
        if arg.startswith('--'):
            explicit.add(arg[2:].split('=', 1)[0].replace('-', '_'))
        elif arg.startswith('-') and len(arg) == 2 and arg[1] in _SHORT_TO_LONG:
            explicit.add(_SHORT_TO_LONG[arg[1]])
    # --no-x flags set x
    explicit |= {name[3:] for name in explicit if name.startswith('no_')}
    return explicit


def merge_config_with_args(
    config: Dict[str, Any],
    args: Namespace,
    command: str,
    cli_args: Optional[List[str]] = None,
) -> Namespace:
    """
    Merge config file values with CLI arguments.

    Priority (highest to lowest):
    1. Explicitly provided CLI arguments
    2. Config file values (the command's section, then top level)
    3. CLI argument defaults

    Parameters:
        config: Configuration dictionary from load_config()
        args: Parsed CLI arguments (argparse.Namespace)
        command: "propd" or "propr"; selects the config section
        cli_args: Raw CLI arguments list (for detecting explicit values)
                  If None, assumes all args are defaults

    Returns:
        Updated Namespace with merged values
    """
    explicit_args = _explicit_args(cli_args)
    merged = Namespace(**vars(args))

    for config_key, arg_name in _SHARED_KEYS.items():
        if config_key not in config or not hasattr(merged, arg_name):
            continue
        config_value = config[config_key]
        if config_value is not None and arg_name in _PATH_ARGS:
            config_value = Path(config_value)
        setattr(merged, arg_name, _merge_value(
            getattr(merged, arg_name), config_value, arg_name, arg_name in explicit_args,
        ))

    section = config.get(command) or {}
    for config_key, arg_name in _SECTION_KEYS[command].items():
        if config_key not in section:
            continue
        setattr(merged, arg_name, _merge_value(
            getattr(merged, arg_name), section[config_key], arg_name, arg_name in explicit_args,
        ))

    return merged


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration structure and values.

    Parameters:
        config: Configuration dictionary

    Raises:
        ValueError: If configuration is invalid
    """
    unknown = set(config) - set(_SHARED_KEYS) - set(_SECTION_KEYS)
    if unknown:
        raise ValueError(f"Unknown config keys: {sorted(unknown)}")

    for command, keys in _SECTION_KEYS.items():
        section = config.get(command)
        if section is None:
            continue
        if not isinstance(section, dict):
            raise ValueError(f"Config section '{command}' must be a mapping")
        unknown = set(section) - set(keys)
        if unknown:
            raise ValueError(f"Unknown keys in '{command}': {sorted(unknown)}")

        alpha = section.get('alpha')
        if alpha is not None and (not isinstance(alpha, (int, float)) or alpha == 0):
            raise ValueError(f"alpha must be a non-zero number, got: {alpha}")

    propd = config.get('propd') or {}
    if 'active' in propd:
        valid = [t.value for t in ThetaType]
        if propd['active'] not in valid:
            raise ValueError(
                f"Invalid active statistic '{propd['active']}'. "
                f"Choose from: {', '.join(valid)}"
            )
        if propd['active'] == ThetaType.THETA_MOD.value and propd.get('moderated') is False:
            raise ValueError("active theta_mod requires moderated: true")
    if 'permutations' in propd:
        p = propd['permutations']
        if not isinstance(p, int) or isinstance(p, bool) or p < 0:
            raise ValueError(f"permutations must be a non-negative integer, got: {p}")
    if 'cutoffs' in propd:
        cutoffs = propd['cutoffs']
        if not isinstance(cutoffs, list) or not cutoffs or not all(
            isinstance(c, (int, float)) for c in cutoffs
        ):
            raise ValueError(f"cutoffs must be a non-empty list of numbers, got: {cutoffs}")
    if 'pval' in propd:
        pval = propd['pval']
        if not isinstance(pval, (int, float)) or not 0 <= pval <= 1:
            raise ValueError(f"pval must be in [0, 1], got: {pval}")
    if propd.get('n_jobs') == 0:
        raise ValueError("n_jobs must be non-zero")

    propr = config.get('propr') or {}
    if 'metric' in propr:
        valid = [m.value for m in Metric]
        if propr['metric'] not in valid:
            raise ValueError(
                f"Invalid metric '{propr['metric']}'. Choose from: {', '.join(valid)}"
            )
