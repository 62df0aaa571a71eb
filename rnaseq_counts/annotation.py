"""
Transcript-to-gene map module.

This module parses GFF3/GTF annotations (plain or gzipped) and two-column
transcript-to-gene tables into a TranscriptGeneMap. Records without a
gene parent are dropped.
"""

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

import pandas as pd

from .errors import MalformedAnnotation
from .utils import open_text, validate_file_exists

logger = logging.getLogger(__name__)

TRANSCRIPT_FEATURES = {
    'transcript', 'mRNA', 'ncRNA', 'lnc_RNA', 'lncRNA', 'miRNA', 'snRNA', 'snoRNA',
    'rRNA', 'tRNA', 'scRNA', 'pseudogenic_transcript', 'unconfirmed_transcript',
    'primary_transcript', 'NMD_transcript_variant', 'V_gene_segment', 'C_gene_segment',
    'D_gene_segment', 'J_gene_segment',
}

ID_PREFIXES = ('transcript:', 'gene:')

_GTF_ATTR = re.compile(r'(\S+)\s+"([^"]*)"')
_VERSION_SUFFIX = re.compile(r'\.\d+$')


def strip_version(feature_id: str) -> str:
    """Remove a trailing '.N' version suffix from a feature id."""
    return _VERSION_SUFFIX.sub('', feature_id)


class TranscriptGeneMap:
    """Many-to-one mapping from transcript id to gene id."""

    def __init__(self, pairs: Iterable[Tuple[str, Optional[str]]] = ()):
        self._map: Dict[str, str] = {}
        self.n_dropped = 0
        for transcript_id, gene_id in pairs:
            self._add(transcript_id, gene_id)

    def _add(self, transcript_id: str, gene_id: Optional[str]) -> None:
        if not transcript_id:
            self.n_dropped += 1
            return
        if gene_id is None or pd.isna(gene_id) or not str(gene_id).strip():
            self.n_dropped += 1
            return
        # last write wins
        self._map[transcript_id] = str(gene_id)

    def __getitem__(self, transcript_id: str) -> str:
        return self._map[transcript_id]

    def __contains__(self, transcript_id: object) -> bool:
        return transcript_id in self._map

    def __len__(self) -> int:
        return len(self._map)

    def __iter__(self) -> Iterator[str]:
        return iter(self._map)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TranscriptGeneMap):
            return NotImplemented
        return self._map == other._map

    def get(self, transcript_id: str, default: Optional[str] = None) -> Optional[str]:
        return self._map.get(transcript_id, default)

    def items(self):
        return self._map.items()

    def genes(self) -> List[str]:
        """Sorted distinct gene ids."""
        return sorted(set(self._map.values()))

    def as_series(self) -> pd.Series:
        return pd.Series(self._map, name='gene_id', dtype=object).rename_axis('transcript_id')

    def without_versions(self) -> 'TranscriptGeneMap':
        """Copy of this map with transcript version suffixes removed."""
        stripped = TranscriptGeneMap((strip_version(tx), gene) for tx, gene in self._map.items())
        stripped.n_dropped = self.n_dropped
        return stripped

    def to_tsv(self, output_file: Union[str, Path]) -> Path:
        """Write the map as a two-column TSV (transcript_id, gene_id)."""
        output_file = Path(output_file)
        frame = self.as_series().reset_index()
        frame.to_csv(output_file, sep='\t', index=False)
        logger.info(f"Wrote {len(self)} transcript-gene pairs to {output_file}")
        return output_file

    @classmethod
    def read_tsv(cls, tsv_file: Union[str, Path]) -> 'TranscriptGeneMap':
        """
        Read a two-column transcript-to-gene table.

        A header line is detected when the first row reads
        transcript_id/gene_id (any case); otherwise the file is headerless.
        """
        tsv_file = validate_file_exists(tsv_file)
        try:
            df = pd.read_csv(tsv_file, sep='\t', header=None, dtype=str,
                             comment='#', keep_default_na=False, na_values=[''])
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise MalformedAnnotation(str(tsv_file), f"could not read table: {e}")

        if df.shape[1] < 2:
            raise MalformedAnnotation(str(tsv_file), "expected at least two columns")

        first = [str(v).lower() for v in df.iloc[0, :2]]
        if first[0] in ('transcript_id', 'transcript', 'tx', 'txid', 'target_id', 'name'):
            df = df.iloc[1:]

        tx2gene = cls(zip(df.iloc[:, 0], df.iloc[:, 1]))
        logger.info(f"Loaded {len(tx2gene)} transcript-gene pairs from {tsv_file}")
        return tx2gene


def detect_annotation_format(annotation_file: Path) -> str:
    """Guess 'gtf' or 'gff3' from the suffix, falling back to the attribute syntax."""
    name = annotation_file.name.lower()
    if name.endswith('.gz'):
        name = name[:-3]
    if name.endswith('.gtf'):
        return 'gtf'
    if name.endswith(('.gff3', '.gff')):
        return 'gff3'

    with open_text(annotation_file) as f:
        for line in f:
            if not line.strip() or line.startswith('#'):
                continue
            fields = line.rstrip('\n').split('\t')
            if len(fields) == 9:
                return 'gtf' if _GTF_ATTR.search(fields[8]) else 'gff3'
            break
    raise MalformedAnnotation(str(annotation_file), "could not determine annotation format")


def _parse_gff3_attributes(attr_string: str) -> Dict[str, str]:
    attrs = {}
    for attr in attr_string.strip().split(';'):
        if not attr.strip():
            continue
        key, sep, value = attr.partition('=')
        if sep:
            attrs[key.strip()] = value.strip()
    return attrs


def _parse_gtf_attributes(attr_string: str) -> Dict[str, str]:
    return {key: value for key, value in _GTF_ATTR.findall(attr_string)}


def _strip_prefix(feature_id: str) -> str:
    for prefix in ID_PREFIXES:
        if feature_id.startswith(prefix):
            return feature_id[len(prefix):]
    return feature_id


def iter_transcript_records(
    annotation_file: Union[str, Path],
    fmt: str = 'auto'
) -> Iterator[Tuple[str, Optional[str]]]:
    """
    Yield (transcript id, parent gene id) for every transcript-like record.

    Args:
        annotation_file: GFF3 or GTF file, optionally gzipped
        fmt: 'gff3', 'gtf' or 'auto'

    Yields:
        Tuples of transcript id and gene id (None when the record has no parent)

    Raises:
        MalformedAnnotation: If a data line does not have nine tab-separated columns
    """
    annotation_file = Path(annotation_file)
    if fmt == 'auto':
        fmt = detect_annotation_format(annotation_file)
    if fmt not in ('gff3', 'gtf'):
        raise ValueError(f"Unsupported annotation format: {fmt}")

    with open_text(annotation_file) as f:
        for line_number, line in enumerate(f, start=1):
            if line.startswith('##FASTA'):
                break
            if not line.strip() or line.startswith('#'):
                continue

            fields = line.rstrip('\n').split('\t')
            if len(fields) != 9:
                raise MalformedAnnotation(
                    str(annotation_file),
                    f"line {line_number} has {len(fields)} columns, expected 9"
                )

            feature_type = fields[2]
            if fmt == 'gtf':
                if feature_type != 'transcript':
                    continue
                attrs = _parse_gtf_attributes(fields[8])
                transcript_id = attrs.get('transcript_id', '')
                yield transcript_id, attrs.get('gene_id') or None
            else:
                attrs = _parse_gff3_attributes(fields[8])
                if 'transcript_id' not in attrs and feature_type not in TRANSCRIPT_FEATURES:
                    continue
                transcript_id = attrs.get('transcript_id') or _strip_prefix(attrs.get('ID', ''))
                parent = attrs.get('Parent')
                if parent:
                    # multiple parents: the first one is the gene
                    parent = _strip_prefix(parent.split(',')[0])
                yield transcript_id, parent or None


def build_tx2gene(
    annotation_file: Union[str, Path],
    fmt: str = 'auto'
) -> TranscriptGeneMap:
    """
    Build a transcript-to-gene map from a feature annotation.

    Args:
        annotation_file: GFF3/GTF annotation, or a two-column TSV map
        fmt: 'gff3', 'gtf', 'tsv' or 'auto'

    Returns:
        TranscriptGeneMap with records lacking a parent dropped

    Raises:
        MalformedAnnotation: If the annotation cannot be parsed
    """
    annotation_file = validate_file_exists(annotation_file)
    name = annotation_file.name.lower()
    if fmt == 'tsv' or (fmt == 'auto' and name.endswith(('.tsv', '.tsv.gz', '.txt'))):
        return TranscriptGeneMap.read_tsv(annotation_file)

    logger.info(f"Building transcript-gene map from {annotation_file}")

    n_records = 0
    tx2gene = TranscriptGeneMap()
    try:
        for transcript_id, gene_id in iter_transcript_records(annotation_file, fmt):
            n_records += 1
            tx2gene._add(transcript_id, gene_id)
    except (UnicodeDecodeError, EOFError, OSError) as e:
        raise MalformedAnnotation(str(annotation_file), f"could not read file: {e}")

    if n_records == 0:
        raise MalformedAnnotation(str(annotation_file), "no transcript records found")

    logger.debug(f"Dropped {tx2gene.n_dropped} transcript records without a gene parent")
    logger.info(
        f"Mapped {len(tx2gene)} transcripts to {len(tx2gene.genes())} genes"
    )
    return tx2gene
