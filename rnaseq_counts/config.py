"""
Run configuration.

A PipelineConfig is built once per run, from a YAML file and/or CLI
options, and handed read-only to every stage.
"""

import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .aggregate import CountsFromAbundance, Level
from .quantify import FailurePolicy, QuantificationConfig
from .utils import validate_file_exists

logger = logging.getLogger(__name__)

PATH_FIELDS = ('index', 'output_dir', 'input_dir', 'samplesheet', 'annotation', 'tx2gene')


@dataclass(frozen=True)
class PipelineConfig:
    output_dir: Path
    index: Optional[Path] = None
    input_dir: Optional[Path] = None
    samplesheet: Optional[Path] = None
    annotation: Optional[Path] = None
    tx2gene: Optional[Path] = None
    parallelism: int = 1
    threads_per_sample: int = 4
    on_failure: FailurePolicy = FailurePolicy.ABORT_ALL
    level: Level = Level.BOTH
    length_tolerance: float = 0.0
    counts_from_abundance: CountsFromAbundance = CountsFromAbundance.NO
    ignore_tx_version: bool = False
    overwrite: bool = False
    quantifier: str = 'salmon'
    lib_type: str = 'A'

    def __post_init__(self):
        for name in PATH_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                object.__setattr__(self, name, Path(value))

        try:
            object.__setattr__(self, 'on_failure', FailurePolicy(self.on_failure))
            object.__setattr__(self, 'level', Level(self.level))
            object.__setattr__(self, 'counts_from_abundance',
                               CountsFromAbundance(self.counts_from_abundance))
        except ValueError as e:
            raise ValueError(f"Invalid configuration value: {e}")

        if self.parallelism < 1:
            raise ValueError(f"parallelism must be a positive integer, got {self.parallelism}")
        if self.threads_per_sample < 1:
            raise ValueError(f"threads_per_sample must be a positive integer, got {self.threads_per_sample}")
        if self.length_tolerance < 0:
            raise ValueError(f"length_tolerance must be non-negative, got {self.length_tolerance}")
        if self.input_dir is not None and self.samplesheet is not None:
            raise ValueError("Specify either input_dir or samplesheet, not both")
        if self.annotation is not None and self.tx2gene is not None:
            raise ValueError("Specify either annotation or tx2gene, not both")

    @property
    def quantification(self) -> QuantificationConfig:
        return QuantificationConfig(
            parallelism=self.parallelism,
            threads_per_sample=self.threads_per_sample,
            on_failure=self.on_failure,
            overwrite=self.overwrite,
        )

    @property
    def needs_gene_map(self) -> bool:
        return self.level is not Level.TRANSCRIPT

    def with_overrides(self, **overrides: Any) -> 'PipelineConfig':
        """Copy with the non-None overrides applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for config_field in dataclasses.fields(self):
            value = getattr(self, config_field.name)
            if isinstance(value, Path):
                value = str(value)
            elif hasattr(value, 'value'):
                value = value.value
            result[config_field.name] = value
        return result


def load_config(config_file: Union[str, Path], **overrides: Any) -> PipelineConfig:
    """
    Load a PipelineConfig from a YAML file.

    Relative paths are resolved against the YAML file's directory.

    Args:
        config_file: YAML mapping of PipelineConfig fields
        **overrides: Values that replace the file's (None is ignored)

    Returns:
        Validated PipelineConfig

    Raises:
        ValueError: If the file is not a mapping or has unknown/invalid keys
    """
    config_file = validate_file_exists(config_file)
    with open(config_file, 'r') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Could not parse config {config_file}: {e}")

    if not isinstance(data, dict):
        raise ValueError(f"Config {config_file} must be a mapping")

    known = {config_field.name for config_field in dataclasses.fields(PipelineConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown config keys in {config_file}: {unknown}")

    base_dir = config_file.parent
    for name in PATH_FIELDS:
        if data.get(name) is not None:
            path = Path(data[name]).expanduser()
            data[name] = path if path.is_absolute() else base_dir / path

    data.update({key: value for key, value in overrides.items() if value is not None})
    if data.get('output_dir') is None:
        raise ValueError("output_dir is required")

    logger.debug(f"Loaded configuration from {config_file}")
    return PipelineConfig(**data)
