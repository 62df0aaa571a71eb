#!/usr/bin/env python3
"""
rnaseq_counts CLI

Command-line interface for turning paired-end RNA-seq reads into
transcript- and gene-level count matrices: build the transcript-to-gene
map, run the quantifier per sample, and aggregate the outputs.
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .aggregate import CountsFromAbundance, Level
from .annotation import build_tx2gene
from .config import PipelineConfig, load_config
from .pipeline import aggregate_outputs, find_quant_outputs, load_gene_map, run_pipeline, save_containers
from .quantify import FailurePolicy, QuantificationConfig, SalmonQuantifier, run_quantification
from .report import RunReport
from .samples import discover_samples, load_samplesheet
from .utils import setup_logging

app = typer.Typer(
    name="rnaseq_counts",
    help="RNA-seq Counts - per-sample quantification and gene-level count matrices",
    add_completion=False,
)

console = Console()

# Global options
def version_callback(value: bool):
    if value:
        console.print(f"rnaseq_counts v{__version__}")
        raise typer.Exit()

def verbose_callback(value: bool):
    if value:
        setup_logging(level=logging.DEBUG)
    else:
        setup_logging(level=logging.INFO)

@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit"
    ),
    verbose: bool = typer.Option(
        False, "--verbose",
        callback=verbose_callback,
        help="Enable verbose logging"
    ),
):
    """RNA-seq Counts CLI"""
    pass

def _print_report(report: RunReport) -> None:
    table = Table(title="Run summary")
    table.add_column("Sample")
    table.add_column("Status")
    table.add_column("Detail")
    for sample_id, path in report.successful.items():
        table.add_row(sample_id, "[green]ok[/green]", str(path))
    for failure in report.failures:
        table.add_row(failure.sample_id, f"[red]{failure.stage} failed[/red]", str(failure))
    console.print(table)
    if report.unmapped:
        console.print(
            f"[yellow]{len(report.unmapped)} transcripts had no gene and were left out "
            f"of gene-level output[/yellow]"
        )

@app.command()
def tx2gene(
    annotation: Path = typer.Argument(..., help="GFF3/GTF annotation (optionally gzipped)"),
    output_file: Path = typer.Option("tx2gene.tsv", help="Output transcript-to-gene TSV"),
    annotation_format: str = typer.Option("auto", "--format", help="gff3, gtf or auto"),
):
    """Build a transcript-to-gene map from an annotation."""
    console.print("[bold blue]Building transcript-to-gene map[/bold blue]")

    try:
        mapping = build_tx2gene(annotation, annotation_format)
        mapping.to_tsv(output_file)
        console.print(f"[bold green]Mapped {len(mapping)} transcripts to {len(mapping.genes())} genes[/bold green]")
        console.print(f"Map saved to: {output_file}")

    except Exception as e:
        console.print(f"[bold red]Error building transcript-to-gene map: {e}[/bold red]")
        sys.exit(1)

@app.command()
def quant(
    index: Path = typer.Argument(..., help="Quantifier index directory"),
    input_dir: Optional[Path] = typer.Option(None, help="Directory with paired FASTQ files"),
    samplesheet: Optional[Path] = typer.Option(None, help="TSV samplesheet (sample_id, fastq_1, fastq_2)"),
    output_dir: Path = typer.Option("./quant", help="Output directory (one subdirectory per sample)"),
    parallelism: int = typer.Option(1, help="Samples quantified concurrently"),
    threads: int = typer.Option(4, help="Threads per quantifier invocation"),
    on_failure: FailurePolicy = typer.Option(FailurePolicy.ABORT_ALL, help="Failure policy"),
    overwrite: bool = typer.Option(False, help="Re-run samples that already have output"),
    quantifier: str = typer.Option("salmon", help="Quantifier executable"),
    lib_type: str = typer.Option("A", help="Library type passed to the quantifier"),
):
    """Run the quantifier once per sample."""
    console.print("[bold blue]Running quantification[/bold blue]")

    try:
        if samplesheet is not None:
            samples = load_samplesheet(samplesheet, output_dir)
        elif input_dir is not None:
            samples = discover_samples(input_dir, output_dir)
        else:
            raise ValueError("Provide --input-dir or --samplesheet")

        config = QuantificationConfig(parallelism, threads, on_failure, overwrite)
        result = run_quantification(samples, index, config, SalmonQuantifier(quantifier, lib_type))

        report = RunReport(n_requested=len(samples), successful=dict(result.outputs),
                           failures=list(result.failures))
        report.save(output_dir)
        _print_report(report)
        console.print(f"[bold green]Quantification completed: {len(result.outputs)}/{len(samples)} samples[/bold green]")

    except Exception as e:
        console.print(f"[bold red]Error in quantification: {e}[/bold red]")
        sys.exit(1)

@app.command()
def aggregate(
    quant_dir: Path = typer.Argument(..., help="Directory with <sample>/quant.sf outputs"),
    output_dir: Path = typer.Option("./counts", help="Output directory"),
    annotation: Optional[Path] = typer.Option(None, help="GFF3/GTF annotation"),
    tx2gene_file: Optional[Path] = typer.Option(None, "--tx2gene", help="Transcript-to-gene TSV"),
    samples: Optional[List[str]] = typer.Option(None, "--sample", help="Samples to include, in order"),
    level: Level = typer.Option(Level.BOTH, help="Aggregation level"),
    on_failure: FailurePolicy = typer.Option(FailurePolicy.ABORT_ALL, help="Failure policy"),
    length_tolerance: float = typer.Option(0.0, help="Allowed transcript length difference"),
    counts_from_abundance: CountsFromAbundance = typer.Option(CountsFromAbundance.NO, help="Count scaling"),
    ignore_tx_version: bool = typer.Option(False, help="Strip transcript version suffixes"),
):
    """Aggregate existing quantifier outputs into count matrices."""
    console.print("[bold blue]Aggregating quantifications[/bold blue]")

    try:
        config = PipelineConfig(
            output_dir=output_dir,
            annotation=annotation,
            tx2gene=tx2gene_file,
            level=level,
            on_failure=on_failure,
            length_tolerance=length_tolerance,
            counts_from_abundance=counts_from_abundance,
            ignore_tx_version=ignore_tx_version,
        )
        outputs = find_quant_outputs(quant_dir)
        if samples:
            outputs = {sample: quant_dir / sample / 'quant.sf' for sample in samples}

        report = RunReport(n_requested=len(outputs), successful=dict(outputs))
        result = aggregate_outputs(outputs, config, load_gene_map(config), report)
        save_containers(result, output_dir, report)
        report.save(output_dir)

        _print_report(report)
        console.print("[bold green]Aggregation completed![/bold green]")
        console.print(f"Results saved to: {output_dir}")

    except Exception as e:
        console.print(f"[bold red]Error in aggregation: {e}[/bold red]")
        sys.exit(1)

@app.command()
def run(
    config_file: Path = typer.Argument(..., help="YAML run configuration"),
    output_dir: Optional[Path] = typer.Option(None, help="Override output directory"),
    parallelism: Optional[int] = typer.Option(None, help="Override parallelism"),
    threads: Optional[int] = typer.Option(None, help="Override threads per sample"),
    on_failure: Optional[FailurePolicy] = typer.Option(None, help="Override failure policy"),
    level: Optional[Level] = typer.Option(None, help="Override aggregation level"),
):
    """Run quantification and aggregation from a configuration file."""
    console.print("[bold blue]Running pipeline[/bold blue]")

    try:
        config = load_config(
            config_file,
            output_dir=output_dir,
            parallelism=parallelism,
            threads_per_sample=threads,
            on_failure=on_failure,
            level=level,
        )
        result, report = run_pipeline(config)

        _print_report(report)
        console.print("[bold green]Pipeline completed successfully![/bold green]")
        console.print(f"Results saved to: {config.output_dir}")

    except Exception as e:
        console.print(f"[bold red]Pipeline failed: {e}[/bold red]")
        sys.exit(1)

@app.command()
def validate_samplesheet(
    samplesheet: Path = typer.Argument(..., help="Samplesheet file to validate"),
    output_dir: Path = typer.Option("./quant", help="Quantification output root"),
):
    """Validate a samplesheet and list its samples."""
    console.print("[bold blue]Validating samplesheet[/bold blue]")

    try:
        samples = load_samplesheet(samplesheet, output_dir)
        console.print("[bold green]Samplesheet is valid![/bold green]")
        console.print(f"Found {len(samples)} valid samples")
        for sample in samples:
            console.print(f"  {sample.sample_id}: {sample.fastq_1.name}, {sample.fastq_2.name}")

    except Exception as e:
        console.print(f"[bold red]Samplesheet validation failed: {e}[/bold red]")
        sys.exit(1)

if __name__ == "__main__":
    app()
