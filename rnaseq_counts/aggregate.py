"""
Aggregation module for multi-sample quantification.

This module merges per-sample transcript tables into aligned
transcript x sample matrices (counts, abundance, effective length) and
summarises them to gene level through a transcript-to-gene map.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd

from .annotation import TranscriptGeneMap, strip_version
from .container import ExperimentContainer
from .errors import (
    CorruptQuantification, EmptySampleSet, InconsistentTranscriptLength, UnmappedTranscripts
)
from .reader import SampleQuant

logger = logging.getLogger(__name__)


class Level(str, Enum):
    TRANSCRIPT = "transcript"
    GENE = "gene"
    BOTH = "both"


class CountsFromAbundance(str, Enum):
    NO = "no"
    SCALED_TPM = "scaledTPM"
    LENGTH_SCALED_TPM = "lengthScaledTPM"


@dataclass
class AggregationResult:
    transcripts: Optional[ExperimentContainer]
    genes: Optional[ExperimentContainer]
    unmapped: UnmappedTranscripts


def _strip_versions(quant: SampleQuant) -> SampleQuant:
    table = quant.table.copy()
    table.index = pd.Index([strip_version(tx) for tx in table.index], name='transcript_id')
    if table.index.has_duplicates:
        dupes = table.index[table.index.duplicated()].unique()[:5].tolist()
        raise CorruptQuantification(
            quant.sample_id, f"transcript ids collide after removing versions: {dupes}"
        )
    return SampleQuant(quant.sample_id, table)


def _column_frame(quants: Sequence[SampleQuant], column: str, index: pd.Index) -> pd.DataFrame:
    """One column from every sample, aligned to index; absent cells are NaN."""
    frame = pd.DataFrame(
        {quant.sample_id: quant.table[column].reindex(index) for quant in quants},
        index=index,
        dtype=np.float64,
    )
    frame.columns = pd.Index([quant.sample_id for quant in quants], name='sample_id')
    return frame


def _reference_lengths(lengths: pd.DataFrame, tolerance: float) -> pd.Series:
    """
    Reconcile the per-sample reference lengths of each transcript.

    Returns the first observed length (in sample order) after checking that
    all observed lengths agree within tolerance.
    """
    spread = lengths.max(axis=1, skipna=True) - lengths.min(axis=1, skipna=True)
    offending = spread.index[spread > tolerance]
    if len(offending) > 0:
        transcript_id = offending[0]
        observed = lengths.loc[transcript_id].dropna()
        raise InconsistentTranscriptLength(
            transcript_id, {sample: int(length) for sample, length in observed.items()}
        )
    return lengths.bfill(axis=1).iloc[:, 0]


def counts_from_abundance(
    counts: pd.DataFrame,
    abundance: pd.DataFrame,
    length: pd.DataFrame,
    method: CountsFromAbundance
) -> pd.DataFrame:
    """
    Regenerate counts from abundance, scaled to each sample's library size.

    scaledTPM scales abundance directly; lengthScaledTPM first multiplies
    abundance by the feature's mean length across samples.
    """
    method = CountsFromAbundance(method)
    if method is CountsFromAbundance.NO:
        return counts.copy()

    if method is CountsFromAbundance.LENGTH_SCALED_TPM:
        abundance = abundance.mul(length.mean(axis=1), axis=0)

    library_size = counts.sum(axis=0)
    abundance_total = abundance.sum(axis=0).replace(0.0, np.nan)
    scaled = abundance.div(abundance_total, axis=1).mul(library_size, axis=1)
    return scaled.fillna(0.0)


def _assays(
    counts: pd.DataFrame,
    abundance: pd.DataFrame,
    length: pd.DataFrame,
    method: CountsFromAbundance
) -> Dict[str, pd.DataFrame]:
    assays = {'counts': counts, 'abundance': abundance, 'length': length}
    if method is not CountsFromAbundance.NO:
        assays['counts'] = counts_from_abundance(counts, abundance, length, method)
        assays['raw_counts'] = counts
    return assays


def summarize_to_genes(
    counts: pd.DataFrame,
    abundance: pd.DataFrame,
    length: pd.DataFrame,
    gene_ids: pd.Series
) -> Dict[str, pd.DataFrame]:
    """
    Sum transcript-level matrices into gene-level matrices.

    Counts and abundance are summed per gene. Gene length is the average of
    transcript lengths weighted by that sample's transcript counts, or the
    plain average when all of a gene's counts in a sample are zero.

    Args:
        counts, abundance, length: Transcript x sample matrices (mapped rows only)
        gene_ids: Gene id per transcript, aligned with the matrices' rows

    Returns:
        Dict with 'counts', 'abundance' and 'length' gene x sample matrices
        with gene ids sorted lexicographically
    """
    grouper = gene_ids.rename('gene_id')

    gene_counts = counts.groupby(grouper, sort=True).sum()
    gene_abundance = abundance.groupby(grouper, sort=True).sum()

    weighted = (length * counts).groupby(grouper, sort=True).sum()
    simple = length.groupby(grouper, sort=True).mean()
    gene_length = weighted.div(gene_counts.where(gene_counts > 0))
    gene_length = gene_length.where(gene_counts > 0, simple)

    for matrix in (gene_counts, gene_abundance, gene_length):
        matrix.index.name = 'gene_id'
        matrix.columns = counts.columns
    return {'counts': gene_counts, 'abundance': gene_abundance, 'length': gene_length}


def aggregate_samples(
    quants: Sequence[SampleQuant],
    tx2gene: Optional[TranscriptGeneMap] = None,
    level: Level = Level.BOTH,
    length_tolerance: float = 0.0,
    counts_from_abundance_method: CountsFromAbundance = CountsFromAbundance.NO,
    ignore_tx_version: bool = False
) -> AggregationResult:
    """
    Merge per-sample transcript tables into transcript- and/or gene-level containers.

    Args:
        quants: Fully read per-sample tables; their order fixes the column order
        tx2gene: Transcript-to-gene map (required for gene level)
        level: 'transcript', 'gene' or 'both'
        length_tolerance: Allowed absolute difference between the lengths
            reported for one transcript by different samples
        counts_from_abundance_method: 'no', 'scaledTPM' or 'lengthScaledTPM'
        ignore_tx_version: Strip '.N' version suffixes from transcript ids

    Returns:
        AggregationResult with the requested containers and unmapped transcripts

    Raises:
        EmptySampleSet: If no samples are given
        InconsistentTranscriptLength: If a transcript's length differs across samples
    """
    level = Level(level)
    method = CountsFromAbundance(counts_from_abundance_method)

    if not quants:
        raise EmptySampleSet()
    if level is not Level.TRANSCRIPT and tx2gene is None:
        raise ValueError("A transcript-to-gene map is required for gene-level aggregation")

    sample_ids = [quant.sample_id for quant in quants]
    if len(set(sample_ids)) != len(sample_ids):
        raise ValueError(f"Duplicate sample ids: {sample_ids}")

    if ignore_tx_version:
        quants = [_strip_versions(quant) for quant in quants]
        if tx2gene is not None:
            tx2gene = tx2gene.without_versions()

    logger.info(f"Aggregating {len(quants)} samples at {level.value} level")

    union: set = set()
    for quant in quants:
        union.update(quant.transcript_ids)
    transcripts = pd.Index(sorted(union), name='transcript_id')

    ref_length = _reference_lengths(_column_frame(quants, 'length', transcripts), length_tolerance)

    counts = _column_frame(quants, 'est_counts', transcripts).fillna(0.0)
    abundance = _column_frame(quants, 'abundance', transcripts).fillna(0.0)
    length = _column_frame(quants, 'effective_length', transcripts)
    length = length.apply(lambda column: column.fillna(ref_length))

    logger.info(f"Transcript universe: {len(transcripts)} transcripts across {len(quants)} samples")

    col_data = pd.DataFrame(
        {'n_transcripts_observed': [len(quant) for quant in quants]},
        index=pd.Index(sample_ids, name='sample_id'),
    )
    metadata = {'counts_from_abundance': method.value, 'length_tolerance': length_tolerance}

    gene_ids = None
    unmapped = UnmappedTranscripts(())
    if tx2gene is not None:
        gene_ids = pd.Series([tx2gene.get(tx) for tx in transcripts], index=transcripts, dtype=object)
        unmapped = UnmappedTranscripts(tuple(transcripts[gene_ids.isna().to_numpy()]))

    transcript_container = None
    if level in (Level.TRANSCRIPT, Level.BOTH):
        row_data = pd.DataFrame({'length': ref_length.astype(np.int64)}, index=transcripts)
        if gene_ids is not None:
            row_data['gene_id'] = gene_ids
        transcript_container = ExperimentContainer(
            _assays(counts, abundance, length, method),
            row_data=row_data,
            col_data=col_data,
            level=Level.TRANSCRIPT.value,
            metadata=metadata,
        )

    gene_container = None
    if level in (Level.GENE, Level.BOTH):
        if unmapped:
            logger.warning(
                f"{len(unmapped)} transcripts have no gene in the map and were dropped "
                f"from gene-level output (e.g. {', '.join(unmapped.transcript_ids[:3])})"
            )
        mapped = gene_ids.notna().to_numpy()
        genes = summarize_to_genes(
            counts.loc[mapped], abundance.loc[mapped], length.loc[mapped], gene_ids[mapped]
        )
        row_data = gene_ids[mapped].value_counts().rename('n_transcripts').to_frame()
        row_data = row_data.reindex(genes['counts'].index).astype(np.int64)
        gene_container = ExperimentContainer(
            _assays(genes['counts'], genes['abundance'], genes['length'], method),
            row_data=row_data,
            col_data=col_data,
            level=Level.GENE.value,
            metadata={**metadata, 'n_unmapped_transcripts': len(unmapped)},
        )
        logger.info(f"Summarised {int(mapped.sum())} transcripts to {gene_container.n_features} genes")

    return AggregationResult(transcript_container, gene_container, unmapped)
