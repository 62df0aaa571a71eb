"""
End-to-end driver.

Builds the transcript-to-gene map, quantifies samples, reads their
outputs and aggregates them into containers written under the output
directory, together with the run report.
"""

import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .aggregate import AggregationResult, aggregate_samples
from .annotation import TranscriptGeneMap, build_tx2gene
from .config import PipelineConfig
from .container import ExperimentContainer
from .errors import EmptySampleSet, SampleError
from .quantify import Quantifier, SalmonQuantifier, run_quantification
from .reader import read_quant_outputs
from .report import RunReport
from .samples import QUANT_FILENAME, Sample, discover_samples, load_samplesheet, samples_to_frame

logger = logging.getLogger(__name__)


def load_samples(config: PipelineConfig) -> List[Sample]:
    quant_root = config.output_dir / 'quant'
    if config.samplesheet is not None:
        return load_samplesheet(config.samplesheet, quant_root)
    if config.input_dir is not None:
        return discover_samples(config.input_dir, quant_root)
    raise ValueError("Either input_dir or samplesheet must be configured")


def load_gene_map(config: PipelineConfig) -> Optional[TranscriptGeneMap]:
    if not config.needs_gene_map:
        return None
    if config.tx2gene is not None:
        return TranscriptGeneMap.read_tsv(config.tx2gene)
    if config.annotation is not None:
        return build_tx2gene(config.annotation)
    raise ValueError("Gene-level output needs an annotation or a tx2gene table")


def find_quant_outputs(quant_dir: Union[str, Path]) -> Dict[str, Path]:
    """Map sample id -> quant file for every <quant_dir>/<sample>/quant.sf, sorted by sample."""
    quant_dir = Path(quant_dir)
    outputs = {path.parent.name: path for path in sorted(quant_dir.glob(f"*/{QUANT_FILENAME}"))}
    logger.info(f"Found {len(outputs)} quantification outputs in {quant_dir}")
    return outputs


def attach_sample_metadata(container: ExperimentContainer, samples: Sequence[Sample]) -> None:
    """Merge sample attributes into the container's column metadata."""
    selected = [sample for sample in samples if sample.sample_id in container.sample_ids]
    frame = samples_to_frame(selected).set_index('sample_id')
    col_data = container.col_data.join(frame, how='left')
    container.set_col_data(col_data)


def aggregate_outputs(
    outputs: Mapping[str, Path],
    config: PipelineConfig,
    tx2gene: Optional[TranscriptGeneMap],
    report: RunReport
) -> AggregationResult:
    """
    Read quantifier outputs and aggregate the readable ones.

    Corrupt samples are excluded and recorded in the report under
    skip_and_continue, and raised under abort_all.
    """
    quants, corrupt = read_quant_outputs(outputs, config.on_failure)
    for failure in corrupt:
        report.exclude(failure)

    if not quants:
        raise EmptySampleSet("No sample completed quantification successfully")

    result = aggregate_samples(
        quants,
        tx2gene,
        level=config.level,
        length_tolerance=config.length_tolerance,
        counts_from_abundance_method=config.counts_from_abundance,
        ignore_tx_version=config.ignore_tx_version,
    )
    report.unmapped = result.unmapped
    return result


def save_containers(result: AggregationResult, output_dir: Path, report: RunReport) -> None:
    for name, container in (('transcripts', result.transcripts), ('genes', result.genes)):
        if container is not None:
            container.to_directory(output_dir / name)
            report.containers[container.level] = container.shape


def run_pipeline(
    config: PipelineConfig,
    quantifier: Optional[Quantifier] = None
) -> Tuple[AggregationResult, RunReport]:
    """
    Run quantification and aggregation for every configured sample.

    Args:
        config: Run configuration
        quantifier: Per-sample quantifier (default: salmon from config)

    Returns:
        Tuple of (aggregation result, run report)

    Raises:
        QuantificationFailed / CorruptQuantification: Under abort_all
        EmptySampleSet: If no sample could be aggregated
    """
    if config.index is None:
        raise ValueError("A quantifier index is required")

    samples = load_samples(config)
    report = RunReport(n_requested=len(samples))
    tx2gene = load_gene_map(config)
    quantifier = quantifier or SalmonQuantifier(config.quantifier, config.lib_type)

    try:
        quantified = run_quantification(samples, config.index, config.quantification, quantifier)
        report.successful.update(quantified.outputs)
        report.failures.extend(quantified.failures)

        result = aggregate_outputs(quantified.outputs, config, tx2gene, report)
    except SampleError as e:
        report.exclude(e)
        report.save(config.output_dir)
        raise
    except EmptySampleSet:
        report.save(config.output_dir)
        raise

    for container in (result.transcripts, result.genes):
        if container is not None:
            attach_sample_metadata(container, samples)

    save_containers(result, config.output_dir, report)
    report.save(config.output_dir)

    logger.info(
        f"Run complete: {len(report.successful)} samples aggregated, {len(report.failures)} failed"
    )
    return result, report
