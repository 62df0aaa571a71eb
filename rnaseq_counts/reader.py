"""
Quantifier output reader.

This module parses one per-sample quantification table (Salmon quant.sf or
kallisto abundance.tsv) into a validated, typed table and collects many
samples under a failure policy.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Mapping, NamedTuple, Tuple, Union

import numpy as np
import pandas as pd

from .errors import CorruptQuantification
from .quantify import FailurePolicy

logger = logging.getLogger(__name__)

QUANT_COLUMNS = ['length', 'effective_length', 'est_counts', 'abundance']

# source column name -> canonical name
SCHEMAS = {
    'salmon': {
        'Name': 'transcript_id',
        'Length': 'length',
        'EffectiveLength': 'effective_length',
        'NumReads': 'est_counts',
        'TPM': 'abundance',
    },
    'kallisto': {
        'target_id': 'transcript_id',
        'length': 'length',
        'eff_length': 'effective_length',
        'est_counts': 'est_counts',
        'tpm': 'abundance',
    },
}


class TranscriptRecord(NamedTuple):
    transcript_id: str
    length: int
    effective_length: float
    est_counts: float
    abundance: float


@dataclass(frozen=True)
class SampleQuant:
    """Validated quantification of one sample, indexed by transcript id."""

    sample_id: str
    table: pd.DataFrame

    def __len__(self) -> int:
        return len(self.table)

    @property
    def transcript_ids(self) -> pd.Index:
        return self.table.index

    def records(self) -> Iterator[TranscriptRecord]:
        for transcript_id, row in zip(self.table.index, self.table.itertuples(index=False)):
            yield TranscriptRecord(transcript_id, int(row.length), float(row.effective_length),
                                   float(row.est_counts), float(row.abundance))

    @classmethod
    def from_records(cls, sample_id: str, records: List[TranscriptRecord]) -> 'SampleQuant':
        table = pd.DataFrame.from_records(records, columns=TranscriptRecord._fields)
        return cls(sample_id, _validate(sample_id, table))


def _detect_schema(sample_id: str, columns: pd.Index) -> Mapping[str, str]:
    for schema in SCHEMAS.values():
        if all(column in columns for column in schema):
            return schema
    raise CorruptQuantification(
        sample_id, f"unrecognised columns {list(columns)}; expected Salmon or kallisto layout"
    )


def _validate(sample_id: str, table: pd.DataFrame) -> pd.DataFrame:
    """Check the numeric invariants and return the table indexed by transcript id."""
    if table.empty:
        raise CorruptQuantification(sample_id, "no transcript rows")

    ids = table['transcript_id']
    if ids.isna().any() or (ids.astype(str).str.strip() == '').any():
        raise CorruptQuantification(sample_id, "row with empty transcript id")
    ids = ids.astype(str)

    duplicated = ids[ids.duplicated()]
    if len(duplicated) > 0:
        raise CorruptQuantification(sample_id, f"duplicate transcript ids: {duplicated.unique()[:5].tolist()}")

    numeric = table[QUANT_COLUMNS].apply(pd.to_numeric, errors='coerce')
    bad = numeric.isna() | ~np.isfinite(numeric)
    if bad.any().any():
        row = bad.any(axis=1).idxmax()
        raise CorruptQuantification(sample_id, f"non-numeric value for transcript {ids[row]}")

    if (numeric < 0).any().any():
        row = (numeric < 0).any(axis=1).idxmax()
        raise CorruptQuantification(sample_id, f"negative value for transcript {ids[row]}")

    length = numeric['length']
    if ((length <= 0) | (length != np.floor(length))).any():
        row = ((length <= 0) | (length != np.floor(length))).idxmax()
        raise CorruptQuantification(sample_id, f"length is not a positive integer for transcript {ids[row]}")

    eff_length = numeric['effective_length']
    violates = (eff_length <= 0) | (eff_length > length)
    if violates.any():
        row = violates.idxmax()
        raise CorruptQuantification(
            sample_id,
            f"effective length {eff_length[row]} outside (0, {int(length[row])}] for transcript {ids[row]}"
        )

    validated = pd.DataFrame({
        'length': length.astype(np.int64).to_numpy(),
        'effective_length': eff_length.astype(np.float64).to_numpy(),
        'est_counts': numeric['est_counts'].astype(np.float64).to_numpy(),
        'abundance': numeric['abundance'].astype(np.float64).to_numpy(),
    }, index=pd.Index(ids.to_numpy(), name='transcript_id'))
    return validated


def read_quant_file(quant_file: Union[str, Path], sample_id: str) -> SampleQuant:
    """
    Read and validate one quantifier output table.

    Args:
        quant_file: Path to quant.sf / abundance.tsv
        sample_id: Sample the file belongs to (used in error reports)

    Returns:
        SampleQuant indexed by transcript id

    Raises:
        CorruptQuantification: If the file is missing, empty or invalid
    """
    quant_file = Path(quant_file)
    if not quant_file.is_file():
        raise CorruptQuantification(sample_id, f"quantification file not found: {quant_file}")
    if quant_file.stat().st_size == 0:
        raise CorruptQuantification(sample_id, f"quantification file is empty: {quant_file}")

    try:
        df = pd.read_csv(quant_file, sep='\t', dtype=str, keep_default_na=False,
                         na_values=[''])
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise CorruptQuantification(sample_id, f"could not parse {quant_file}: {e}")

    schema = _detect_schema(sample_id, df.columns)
    table = df[list(schema)].rename(columns=schema)
    quant = SampleQuant(sample_id, _validate(sample_id, table))

    logger.debug(f"Read {len(quant)} transcripts for {sample_id} from {quant_file}")
    return quant


def read_quant_outputs(
    outputs: Mapping[str, Union[str, Path]],
    on_failure: FailurePolicy = FailurePolicy.ABORT_ALL
) -> Tuple[List[SampleQuant], List[CorruptQuantification]]:
    """
    Read every sample's output before aggregation.

    Args:
        outputs: Sample id -> quantification file, in sample order
        on_failure: abort_all re-raises the first corrupt sample,
            skip_and_continue excludes it and records the failure

    Returns:
        Tuple of (readable samples in input order, corrupt-sample records)
    """
    on_failure = FailurePolicy(on_failure)
    quants = []
    failures = []

    for sample_id, quant_file in outputs.items():
        try:
            quants.append(read_quant_file(quant_file, sample_id))
        except CorruptQuantification as e:
            if on_failure is FailurePolicy.ABORT_ALL:
                raise
            logger.warning(f"{e}; excluding sample")
            failures.append(e)

    logger.info(f"Read quantifications for {len(quants)} samples ({len(failures)} corrupt)")
    return quants, failures
