"""
Sample discovery module.

Builds immutable Sample descriptors either by enumerating paired FASTQ
files under an input directory or from a TSV samplesheet.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Sequence, Union

import pandas as pd

from .utils import validate_directory_exists, validate_file_exists

logger = logging.getLogger(__name__)

QUANT_FILENAME = 'quant.sf'

FASTQ_PATTERN = re.compile(
    r'^(?P<sample>.+?)_(?:R)?(?P<mate>[12])(?:_001)?\.(?:fastq|fq)(?:\.gz)?$'
)

REQUIRED_COLUMNS = ['sample_id', 'fastq_1', 'fastq_2']


@dataclass(frozen=True)
class Sample:
    """One paired-end sample and where its quantification output goes."""

    sample_id: str
    fastq_1: Path
    fastq_2: Path
    output_dir: Path
    attributes: Mapping[str, str] = field(default_factory=dict, compare=False)

    @property
    def quant_file(self) -> Path:
        return self.output_dir / QUANT_FILENAME


def _check_unique(samples: Sequence[Sample]) -> None:
    seen = set()
    duplicates = set()
    for sample in samples:
        if sample.sample_id in seen:
            duplicates.add(sample.sample_id)
        seen.add(sample.sample_id)
    if duplicates:
        raise ValueError(f"Duplicate sample ids: {sorted(duplicates)}")


def discover_samples(input_dir: Union[str, Path], output_dir: Union[str, Path]) -> List[Sample]:
    """
    Enumerate paired FASTQ files under an input directory.

    Files are matched recursively as <sample>_1/_2 or <sample>_R1/_R2
    (optionally with an _001 suffix), .fastq or .fq, optionally gzipped.

    Args:
        input_dir: Directory containing FASTQ files, flat or one directory per sample
        output_dir: Root under which each sample gets its own output directory

    Returns:
        Samples sorted by sample id

    Raises:
        ValueError: If a sample is missing a mate or has more than one file per mate
    """
    input_dir = validate_directory_exists(input_dir)
    output_dir = Path(output_dir)

    mates: Dict[str, Dict[str, Path]] = {}
    for path in sorted(input_dir.rglob('*')):
        if not path.is_file():
            continue
        match = FASTQ_PATTERN.match(path.name)
        if not match:
            continue
        sample_mates = mates.setdefault(match.group('sample'), {})
        mate = match.group('mate')
        if mate in sample_mates:
            raise ValueError(
                f"Sample {match.group('sample')} has more than one mate {mate} file: "
                f"{sample_mates[mate]}, {path}"
            )
        sample_mates[mate] = path

    samples = []
    for sample_id in sorted(mates):
        pair = mates[sample_id]
        if set(pair) != {'1', '2'}:
            raise ValueError(f"Sample {sample_id} is not paired: found only {list(pair.values())}")
        samples.append(Sample(sample_id, pair['1'], pair['2'], output_dir / sample_id))

    logger.info(f"Discovered {len(samples)} paired samples in {input_dir}")
    return samples


def load_samplesheet(samplesheet_path: Union[str, Path], output_dir: Union[str, Path]) -> List[Sample]:
    """
    Read samples from a TSV samplesheet.

    Args:
        samplesheet_path: TSV with sample_id, fastq_1 and fastq_2 columns
        output_dir: Root under which each sample gets its own output directory

    Returns:
        Samples in samplesheet order; extra columns are kept as attributes

    Raises:
        ValueError: If the samplesheet is invalid or references missing files
    """
    samplesheet_path = validate_file_exists(samplesheet_path)
    output_dir = Path(output_dir)

    try:
        df = pd.read_csv(samplesheet_path, sep='\t', dtype=str)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise ValueError(f"Could not read samplesheet: {e}")

    missing_cols = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing_cols:
        raise ValueError(f"Missing required columns: {missing_cols}")

    incomplete = df[df[REQUIRED_COLUMNS].isna().any(axis=1)]
    if len(incomplete) > 0:
        raise ValueError(f"Rows with empty sample_id/fastq_1/fastq_2: {incomplete.index.tolist()}")

    base_dir = samplesheet_path.parent
    extra_columns = [col for col in df.columns if col not in REQUIRED_COLUMNS]

    samples = []
    for _, row in df.iterrows():
        sample_id = row['sample_id'].strip()
        fastqs = []
        for column in ('fastq_1', 'fastq_2'):
            fastq = Path(row[column])
            if not fastq.is_absolute():
                fastq = base_dir / fastq
            try:
                fastqs.append(validate_file_exists(fastq))
            except FileNotFoundError:
                raise ValueError(f"FASTQ file not found for sample {sample_id}: {fastq}")

        attributes = {col: row[col] for col in extra_columns if pd.notna(row[col])}
        samples.append(Sample(sample_id, fastqs[0], fastqs[1], output_dir / sample_id, attributes))

    _check_unique(samples)
    logger.info(f"Loaded {len(samples)} samples from {samplesheet_path}")
    return samples


def samples_to_frame(samples: Sequence[Sample]) -> pd.DataFrame:
    """Column metadata table (one row per sample) from sample descriptors."""
    records = []
    for sample in samples:
        records.append({
            'sample_id': sample.sample_id,
            **dict(sample.attributes),
            'fastq_1': str(sample.fastq_1),
            'fastq_2': str(sample.fastq_2),
        })
    return pd.DataFrame.from_records(records, columns=_frame_columns(samples))


def _frame_columns(samples: Sequence[Sample]) -> List[str]:
    columns = ['sample_id']
    for sample in samples:
        for key in sample.attributes:
            if key not in columns:
                columns.append(key)
    return columns + ['fastq_1', 'fastq_2']
