#!/usr/bin/env python3
"""
rnaseq_counts - Test Data Generator

Generates small synthetic inputs for testing the package: per-sample
Salmon-style quant.sf tables, GFF3/GTF annotations, paired FASTQ
placeholders and a samplesheet.
"""

import argparse
import gzip
import random
from pathlib import Path
from typing import Dict, List, Optional, Tuple

QUANT_HEADER = "Name\tLength\tEffectiveLength\tTPM\tNumReads\n"


def write_quant_file(
    output_file: Path,
    records: Dict[str, Tuple[int, float, float, float]]
) -> Path:
    """
    Write a Salmon quant.sf table.

    Args:
        output_file: Destination file
        records: transcript id -> (length, effective length, TPM, NumReads)
    """
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    with open(output_file, 'w') as f:
        f.write(QUANT_HEADER)
        for transcript_id, (length, eff_length, tpm, num_reads) in records.items():
            f.write(f"{transcript_id}\t{length}\t{eff_length}\t{tpm}\t{num_reads}\n")
    return output_file


def counts_to_records(
    counts: Dict[str, float],
    lengths: Optional[Dict[str, int]] = None
) -> Dict[str, Tuple[int, float, float, float]]:
    """Build quant.sf records from counts, deriving TPM from counts / effective length."""
    lengths = lengths or {}
    eff_lengths = {tx: max(1.0, lengths.get(tx, 1000) - 150.0) for tx in counts}
    rates = {tx: counts[tx] / eff_lengths[tx] for tx in counts}
    total = sum(rates.values()) or 1.0

    records = {}
    for tx, count in counts.items():
        records[tx] = (lengths.get(tx, 1000), eff_lengths[tx], rates[tx] / total * 1e6, count)
    return records


def write_gff3(output_file: Path, pairs: List[Tuple[str, Optional[str]]], compress: bool = False) -> Path:
    """
    Write an Ensembl-style GFF3 with one gene and mRNA (plus an exon) per pair.

    A pair with a None gene produces an mRNA line without a Parent attribute.
    """
    output_file = Path(output_file)
    lines = ["##gff-version 3\n"]
    genes_written = set()
    start = 1000
    for transcript_id, gene_id in pairs:
        end = start + 999
        if gene_id is not None and gene_id not in genes_written:
            lines.append(f"chr1\ttest\tgene\t{start}\t{end}\t.\t+\t.\tID=gene:{gene_id};gene_id={gene_id}\n")
            genes_written.add(gene_id)
        parent = f";Parent=gene:{gene_id}" if gene_id is not None else ""
        lines.append(
            f"chr1\ttest\tmRNA\t{start}\t{end}\t.\t+\t.\t"
            f"ID=transcript:{transcript_id}{parent};transcript_id={transcript_id}\n"
        )
        lines.append(f"chr1\ttest\texon\t{start}\t{end}\t.\t+\t.\tParent=transcript:{transcript_id}\n")
        start += 2000

    opener = gzip.open if compress else open
    with opener(output_file, 'wt') as f:
        f.writelines(lines)
    return output_file


def write_gtf(output_file: Path, pairs: List[Tuple[str, Optional[str]]]) -> Path:
    """Write a GTF with gene, transcript and exon lines per pair."""
    output_file = Path(output_file)
    start = 1000
    with open(output_file, 'w') as f:
        f.write('#!genome-build test\n')
        for transcript_id, gene_id in pairs:
            end = start + 999
            gene_attr = f'gene_id "{gene_id}"; ' if gene_id is not None else ''
            f.write(f'chr1\ttest\tgene\t{start}\t{end}\t.\t+\t.\t{gene_attr}\n')
            f.write(f'chr1\ttest\ttranscript\t{start}\t{end}\t.\t+\t.\t'
                    f'{gene_attr}transcript_id "{transcript_id}";\n')
            f.write(f'chr1\ttest\texon\t{start}\t{end}\t.\t+\t.\t'
                    f'{gene_attr}transcript_id "{transcript_id}"; exon_number "1";\n')
            start += 2000
    return output_file


def write_fastq_pair(output_dir: Path, sample_id: str, num_reads: int = 10, read_length: int = 50,
                     seed: int = 42) -> Tuple[Path, Path]:
    """Write a tiny gzipped FASTQ pair named <sample>_1/_2.fastq.gz."""
    rng = random.Random(seed)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    for mate in (1, 2):
        path = output_dir / f"{sample_id}_{mate}.fastq.gz"
        with gzip.open(path, 'wt') as f:
            for i in range(num_reads):
                sequence = ''.join(rng.choices('ACGT', k=read_length))
                f.write(f"@{sample_id}.{i}/{mate}\n{sequence}\n+\n{'I' * read_length}\n")
        paths.append(path)
    return paths[0], paths[1]


def create_samplesheet(output_dir: Path, sample_ids: List[str], conditions: Optional[Dict[str, str]] = None) -> Path:
    """Create a samplesheet referencing <sample>_1/_2.fastq.gz in output_dir."""
    output_dir = Path(output_dir)
    conditions = conditions or {}
    samplesheet_file = output_dir / 'samplesheet.tsv'

    with open(samplesheet_file, 'w') as f:
        f.write("sample_id\tfastq_1\tfastq_2\tcondition\n")
        for sample_id in sample_ids:
            condition = conditions.get(sample_id, 'control')
            f.write(f"{sample_id}\t{sample_id}_1.fastq.gz\t{sample_id}_2.fastq.gz\t{condition}\n")

    return samplesheet_file


class QuantGenerator:
    """Generate random but reproducible quantification outputs."""

    def __init__(self, n_genes: int = 20, max_isoforms: int = 3, seed: int = 42):
        self.rng = random.Random(seed)
        self.tx2gene: Dict[str, str] = {}
        self.lengths: Dict[str, int] = {}
        for g in range(n_genes):
            gene_id = f"GENE{g:03d}"
            for t in range(self.rng.randint(1, max_isoforms)):
                transcript_id = f"TX{g:03d}{t}"
                self.tx2gene[transcript_id] = gene_id
                self.lengths[transcript_id] = self.rng.randint(500, 4000)

    def sample_counts(self, dropout: float = 0.1) -> Dict[str, float]:
        counts = {}
        for transcript_id in self.tx2gene:
            if self.rng.random() < dropout:
                continue
            counts[transcript_id] = round(self.rng.lognormvariate(3, 1.5), 3)
        return counts

    def write_sample(self, quant_root: Path, sample_id: str, dropout: float = 0.1) -> Path:
        records = counts_to_records(self.sample_counts(dropout), self.lengths)
        return write_quant_file(Path(quant_root) / sample_id / 'quant.sf', records)


def create_sample_data(output_dir: Path, n_samples: int = 4, n_genes: int = 20, seed: int = 42) -> Dict[str, Path]:
    """
    Create quant outputs, an annotation and FASTQ placeholders for n_samples samples.

    Returns:
        Dictionary with 'quant', 'fastq', 'annotation' and 'samplesheet' paths
    """
    output_dir = Path(output_dir)
    generator = QuantGenerator(n_genes=n_genes, seed=seed)
    sample_ids = [f"sample{i + 1}" for i in range(n_samples)]

    quant_root = output_dir / 'quant'
    fastq_dir = output_dir / 'fastq'
    for i, sample_id in enumerate(sample_ids):
        generator.write_sample(quant_root, sample_id)
        write_fastq_pair(fastq_dir, sample_id, seed=seed + i)

    annotation = write_gff3(output_dir / 'annotation.gff3', list(generator.tx2gene.items()))
    conditions = {sample_id: ('treated' if i % 2 else 'control') for i, sample_id in enumerate(sample_ids)}
    samplesheet = create_samplesheet(fastq_dir, sample_ids, conditions)

    return {'quant': quant_root, 'fastq': fastq_dir, 'annotation': annotation, 'samplesheet': samplesheet}


def main():
    """Command-line interface for test data generation."""
    parser = argparse.ArgumentParser(
        description='Generate synthetic test data for rnaseq_counts'
    )
    parser.add_argument(
        '--output-dir', '-o',
        type=Path,
        default=Path.cwd() / 'test_data',
        help='Output directory for test data'
    )
    parser.add_argument(
        '--samples', '-n',
        type=int,
        default=4,
        help='Number of samples'
    )
    parser.add_argument(
        '--genes', '-g',
        type=int,
        default=20,
        help='Number of genes'
    )
    parser.add_argument(
        '--seed', '-s',
        type=int,
        default=42,
        help='Random seed for reproducibility'
    )

    args = parser.parse_args()

    paths = create_sample_data(args.output_dir, args.samples, args.genes, args.seed)

    print("Test data generation complete!")
    for name, path in paths.items():
        print(f"  {name}: {path}")
    print("To aggregate the test data:")
    print(f"  rnaseq_counts aggregate {paths['quant']} --annotation {paths['annotation']}")


if __name__ == '__main__':
    main()
