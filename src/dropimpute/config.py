"""
Configuration records for the imputation engine.

Every public operation takes an explicit configuration object instead of
relying on shared module state. Records can be built in code or loaded from a
YAML or JSON file.

Example config file (pipeline.yaml):

    normalization:
      scale: 1.0
      pseudo_count: 1.0
      log: true
    evaluation:
      mask_probability: 0.1
      seed: 42
      method_priority: [baseline, network]
    execution:
      n_workers: 4
      timeout: 600
    dropout:
      pseudo_count: 1.01
      max_iter: 100
"""

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from dropimpute.exceptions import InvalidInputError

__all__ = [
    "NormalizationConfig",
    "EvaluationConfig",
    "ExecutionConfig",
    "DropoutConfig",
    "PipelineConfig",
    "load_config",
    "config_from_dict",
]


@dataclass(frozen=True)
class NormalizationConfig:
    """
    Library-size normalization settings shared by RPM and TPM.

    Attributes:
        scale: Factor the normalized values are divided by
        pseudo_count: Added before log2 when ``log`` is set
        log: Return log2(x + pseudo_count) instead of linear values
    """
    scale: float = 1.0
    pseudo_count: float = 1.0
    log: bool = False

    def __post_init__(self):
        if self.scale <= 0:
            raise InvalidInputError(f"scale must be positive, got {self.scale}")
        if self.pseudo_count < 0:
            raise InvalidInputError(
                f"pseudo_count must be non-negative, got {self.pseudo_count}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EvaluationConfig:
    """
    Hide-and-score evaluation settings.

    Attributes:
        mask_probability: Probability that each non-zero entry is masked
        seed: Random seed for masking and for seeded methods
        method_priority: Tie-break order for per-gene selection. None uses
            the order in which methods were requested.
        fallback_method: Method assigned to genes that no method could be
            scored on. None picks the highest-priority usable method.
    """
    mask_probability: float = 0.1
    seed: Optional[int] = None
    method_priority: Optional[List[str]] = None
    fallback_method: Optional[str] = None

    def __post_init__(self):
        if not 0 < self.mask_probability <= 1:
            raise InvalidInputError(
                f"mask_probability must be in (0, 1], got {self.mask_probability}"
            )
        if self.method_priority is not None:
            # Normalize to a tuple of lower-case names (hashable, immutable)
            object.__setattr__(
                self, "method_priority",
                tuple(str(m).lower() for m in self.method_priority),
            )
        if self.fallback_method is not None:
            object.__setattr__(self, "fallback_method", str(self.fallback_method).lower())

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if self.method_priority is not None:
            d["method_priority"] = list(self.method_priority)
        return d


@dataclass(frozen=True)
class ExecutionConfig:
    """
    Method execution settings.

    Attributes:
        n_workers: Threads used to run methods concurrently. None lets the
            executor decide; 1 runs methods sequentially.
        timeout: Seconds allowed for a batch of method runs. Methods still
            running afterwards are recorded as failed.
    """
    n_workers: Optional[int] = None
    timeout: Optional[float] = None

    def __post_init__(self):
        if self.n_workers is not None and self.n_workers < 1:
            raise InvalidInputError(f"n_workers must be >= 1, got {self.n_workers}")
        if self.timeout is not None and self.timeout <= 0:
            raise InvalidInputError(f"timeout must be positive, got {self.timeout}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DropoutConfig:
    """
    Gamma-normal mixture settings for dropout probability estimation.

    Attributes:
        pseudo_count: Values are modelled on log10(x + pseudo_count)
        max_iter: EM iteration cap per gene
        tol: EM stops when the squared change in log10-likelihood drops
            below this value
        n_workers: Threads used across genes (None or 1 = sequential)
    """
    pseudo_count: float = 1.01
    max_iter: int = 100
    tol: float = 0.5
    n_workers: Optional[int] = None

    def __post_init__(self):
        if self.pseudo_count <= 1:
            # log10(pseudo_count) must be > 0 for the gamma component
            raise InvalidInputError(
                f"pseudo_count must be > 1, got {self.pseudo_count}"
            )
        if self.max_iter < 1:
            raise InvalidInputError(f"max_iter must be >= 1, got {self.max_iter}")
        if self.tol <= 0:
            raise InvalidInputError(f"tol must be positive, got {self.tol}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PipelineConfig:
    """
    Complete configuration for one imputation run.

    evaluate_methods() and impute() read ``evaluation``, ``execution`` and
    ``dropout``. Normalization happens before either call, so
    ``normalization`` is handed to the normalizers by the caller:

        >>> config = load_config(Path("pipeline.yaml"))
        >>> counts = normalize_rpm(counts, config.normalization).matrix
        >>> result = impute(counts, methods="ensemble", config=config)
    """
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    evaluation: EvaluationConfig = field(default_factory=EvaluationConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    dropout: DropoutConfig = field(default_factory=DropoutConfig)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "normalization": self.normalization.to_dict(),
            "evaluation": self.evaluation.to_dict(),
            "execution": self.execution.to_dict(),
            "dropout": self.dropout.to_dict(),
        }


_SECTIONS = {
    "normalization": NormalizationConfig,
    "evaluation": EvaluationConfig,
    "execution": ExecutionConfig,
    "dropout": DropoutConfig,
}


# Suffix -> (parser, error raised on malformed text, format label)
_PARSERS = {
    ".yaml": (yaml.safe_load, yaml.YAMLError, "YAML"),
    ".yml": (yaml.safe_load, yaml.YAMLError, "YAML"),
    ".json": (json.loads, json.JSONDecodeError, "JSON"),
}


def load_config(config_path: Path) -> PipelineConfig:
    """
    Read a PipelineConfig from a YAML or JSON file.

    An empty file yields the defaults. Sections and keys are checked by
    config_from_dict().

    Raises:
        FileNotFoundError: If config file doesn't exist
        InvalidInputError: On an unsupported suffix, malformed text, or
            unknown/invalid settings

    Examples:
        >>> load_config(Path("pipeline.yaml")).evaluation.mask_probability
        0.1
    """
    config_path = Path(config_path)
    if not config_path.is_file():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        parse, parse_error, label = _PARSERS[config_path.suffix.lower()]
    except KeyError:
        raise InvalidInputError(
            f"Unsupported config format: {config_path.suffix or '<none>'}. "
            f"Use one of: {', '.join(_PARSERS)}"
        ) from None

    try:
        raw = parse(config_path.read_text())
    except parse_error as e:
        raise InvalidInputError(f"Invalid {label} in {config_path.name}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidInputError(
            f"{config_path.name} must hold a mapping of sections "
            f"({', '.join(_SECTIONS)}), got {type(raw).__name__}"
        )
    return config_from_dict(raw)


def config_from_dict(config: Dict[str, Any]) -> PipelineConfig:
    """
    Build a PipelineConfig from a nested mapping.

    Missing sections and keys keep their defaults.

    Raises:
        InvalidInputError: On unknown sections or keys, or invalid values
    """
    unknown = set(config) - set(_SECTIONS)
    if unknown:
        raise InvalidInputError(
            f"Unknown config section(s): {sorted(unknown)}. "
            f"Choose from: {', '.join(_SECTIONS)}"
        )

    sections = {}
    for name, cls in _SECTIONS.items():
        values = config.get(name) or {}
        if not isinstance(values, dict):
            raise InvalidInputError(f"Config section '{name}' must be a mapping")
        allowed = {f.name for f in fields(cls)}
        bad = set(values) - allowed
        if bad:
            raise InvalidInputError(
                f"Unknown key(s) in '{name}': {sorted(bad)}. "
                f"Allowed: {', '.join(sorted(allowed))}"
            )
        try:
            sections[name] = cls(**values)
        except TypeError as e:
            raise InvalidInputError(f"Invalid '{name}' section: {e}")

    return PipelineConfig(**sections)
