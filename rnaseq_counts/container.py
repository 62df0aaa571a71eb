"""
Experiment container module.

An ExperimentContainer owns a set of equally shaped feature x sample
matrices (assays) together with row (feature) and column (sample)
metadata. Every constructor and mutator re-checks that all assays share
the same feature and sample ids in the same order and that the metadata
tables have one row per feature / sample. Readers get copies or
read-only arrays, never the owned frames.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .errors import DimensionMismatch, MetadataCardinalityMismatch
from .utils import (
    load_metrics_json, save_metrics_json, validate_directory_exists, validate_file_exists
)

logger = logging.getLogger(__name__)

MANIFEST = 'container.json'
ROW_DATA_FILE = 'row_data.tsv'
COL_DATA_FILE = 'col_data.tsv'


class ExperimentContainer:
    """Aligned assays plus feature and sample metadata."""

    def __init__(
        self,
        assays: Mapping[str, pd.DataFrame],
        row_data: Optional[pd.DataFrame] = None,
        col_data: Optional[pd.DataFrame] = None,
        level: str = 'gene',
        metadata: Optional[Mapping[str, Any]] = None
    ):
        if not assays:
            raise DimensionMismatch("A container needs at least one assay")

        names = list(assays)
        reference = assays[names[0]]
        self._feature_ids = pd.Index(reference.index, name='feature_id')
        self._sample_ids = pd.Index(reference.columns, name='sample_id')
        self._check_ids()

        self._assays: Dict[str, pd.DataFrame] = {}
        for name in names:
            self._assays[name] = self._conform(name, assays[name])

        self.level = level
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self._row_data = self._conform_row_data(row_data)
        self._col_data = pd.DataFrame(index=self._sample_ids.copy())
        if col_data is not None:
            self.set_col_data(col_data)
        self._validate()

    def _check_ids(self) -> None:
        if self._feature_ids.has_duplicates:
            dupes = self._feature_ids[self._feature_ids.duplicated()].unique()[:5].tolist()
            raise DimensionMismatch(f"Duplicate feature ids: {dupes}")
        if self._sample_ids.has_duplicates:
            dupes = self._sample_ids[self._sample_ids.duplicated()].unique()[:5].tolist()
            raise DimensionMismatch(f"Duplicate sample ids: {dupes}")

    def _conform(self, name: str, matrix: pd.DataFrame) -> pd.DataFrame:
        """Return an owned float copy of a matrix after checking its shape and ordering."""
        if matrix.shape != (len(self._feature_ids), len(self._sample_ids)):
            raise DimensionMismatch(
                f"Assay '{name}' has shape {matrix.shape}, expected "
                f"({len(self._feature_ids)}, {len(self._sample_ids)})"
            )
        if not matrix.index.equals(self._feature_ids):
            raise DimensionMismatch(f"Assay '{name}' feature ids differ in content or order")
        if not matrix.columns.equals(self._sample_ids):
            raise DimensionMismatch(f"Assay '{name}' sample ids differ in content or order")

        owned = matrix.astype(np.float64).copy()
        owned.index = self._feature_ids.copy()
        owned.columns = self._sample_ids.copy()
        return owned

    def _conform_row_data(self, row_data: Optional[pd.DataFrame]) -> pd.DataFrame:
        if row_data is None:
            return pd.DataFrame(index=self._feature_ids.copy())
        if len(row_data) != len(self._feature_ids):
            raise DimensionMismatch(
                f"Row metadata has {len(row_data)} rows for {len(self._feature_ids)} features"
            )
        if not row_data.index.equals(self._feature_ids):
            raise DimensionMismatch("Row metadata index differs from the assay feature ids")
        owned = row_data.copy()
        owned.index = self._feature_ids.copy()
        return owned

    def _validate(self) -> None:
        for name, matrix in self._assays.items():
            if matrix.shape[0] != len(self._row_data):
                raise DimensionMismatch(f"Assay '{name}' rows disagree with row metadata")
            if matrix.shape[1] != len(self._col_data):
                raise MetadataCardinalityMismatch(f"Assay '{name}' columns disagree with column metadata")
            if not (matrix.index.equals(self._row_data.index)
                    and matrix.columns.equals(self._col_data.index)):
                raise DimensionMismatch(f"Assay '{name}' ordering disagrees with metadata")

    def __repr__(self) -> str:
        return (
            f"ExperimentContainer(level={self.level!r}, features={self.n_features}, "
            f"samples={self.n_samples}, assays={self.assay_names})"
        )

    @property
    def shape(self) -> Tuple[int, int]:
        return len(self._feature_ids), len(self._sample_ids)

    @property
    def n_features(self) -> int:
        return len(self._feature_ids)

    @property
    def n_samples(self) -> int:
        return len(self._sample_ids)

    @property
    def feature_ids(self) -> Tuple[str, ...]:
        return tuple(self._feature_ids)

    @property
    def sample_ids(self) -> Tuple[str, ...]:
        return tuple(self._sample_ids)

    @property
    def assay_names(self) -> List[str]:
        return list(self._assays)

    @property
    def row_data(self) -> pd.DataFrame:
        return self._row_data.copy()

    @property
    def col_data(self) -> pd.DataFrame:
        return self._col_data.copy()

    def assay(self, name: str) -> pd.DataFrame:
        """Copy of one assay as a feature x sample DataFrame."""
        if name not in self._assays:
            raise KeyError(f"No assay named '{name}'; available: {self.assay_names}")
        return self._assays[name].copy()

    def array(self, name: str) -> np.ndarray:
        """Read-only numpy copy of one assay."""
        if name not in self._assays:
            raise KeyError(f"No assay named '{name}'; available: {self.assay_names}")
        values = self._assays[name].to_numpy(copy=True)
        values.flags.writeable = False
        return values

    def add_assay(self, name: str, matrix: pd.DataFrame, replace: bool = False) -> None:
        if name in self._assays and not replace:
            raise ValueError(f"Assay '{name}' already exists")
        self._assays[name] = self._conform(name, matrix)
        self._validate()

    def set_col_data(
        self,
        col_data: pd.DataFrame,
        sample_column: Optional[str] = None,
        reorder: bool = True
    ) -> None:
        """
        Attach sample metadata, one row per sample.

        Args:
            col_data: Sample attributes; ids come from sample_column, a
                'sample_id' column, or the index, in that order
            sample_column: Column holding sample ids
            reorder: Reorder rows to the container's sample order when the
                ids match as a set but not in order

        Raises:
            MetadataCardinalityMismatch: If row count or sample ids disagree
        """
        col_data = col_data.copy()
        if sample_column is None and 'sample_id' in col_data.columns:
            sample_column = 'sample_id'
        if sample_column is not None:
            if sample_column not in col_data.columns:
                raise MetadataCardinalityMismatch(f"Column metadata has no '{sample_column}' column")
            col_data = col_data.set_index(sample_column)
        col_data.index = col_data.index.astype(str)

        if len(col_data) != self.n_samples:
            raise MetadataCardinalityMismatch(
                f"Column metadata has {len(col_data)} rows for {self.n_samples} samples"
            )
        if col_data.index.has_duplicates:
            raise MetadataCardinalityMismatch("Column metadata has duplicate sample ids")

        supplied = set(col_data.index)
        expected = set(self._sample_ids)
        if supplied != expected:
            raise MetadataCardinalityMismatch(
                f"Column metadata sample ids do not match the container: "
                f"missing {sorted(expected - supplied)}, unexpected {sorted(supplied - expected)}"
            )

        if not col_data.index.equals(self._sample_ids):
            if not reorder:
                raise MetadataCardinalityMismatch("Column metadata is not in container sample order")
            logger.debug("Reordering column metadata to container sample order")
            col_data = col_data.reindex(self._sample_ids)

        col_data.index = self._sample_ids.copy()
        self._col_data = col_data
        self._validate()

    def select_samples(self, sample_ids: Sequence[str]) -> 'ExperimentContainer':
        """New container restricted to (and ordered by) the given samples."""
        missing = [sample for sample in sample_ids if sample not in self._sample_ids]
        if missing:
            raise KeyError(f"Unknown samples: {missing}")
        selected = pd.Index(sample_ids, name='sample_id')
        return ExperimentContainer(
            {name: matrix.loc[:, selected] for name, matrix in self._assays.items()},
            row_data=self._row_data,
            col_data=self._col_data.loc[selected],
            level=self.level,
            metadata=self.metadata,
        )

    def to_directory(self, output_dir: Union[str, Path]) -> Path:
        """
        Write assays and metadata as TSV files plus a JSON manifest.

        Args:
            output_dir: Directory to write into (created if needed)

        Returns:
            The output directory
        """
        output_dir = validate_directory_exists(output_dir, create=True)
        for name, matrix in self._assays.items():
            matrix.to_csv(output_dir / f"{name}.tsv", sep='\t', index_label='feature_id')
        self._row_data.to_csv(output_dir / ROW_DATA_FILE, sep='\t', index_label='feature_id')
        self._col_data.to_csv(output_dir / COL_DATA_FILE, sep='\t', index_label='sample_id')
        save_metrics_json({
            'level': self.level,
            'assays': self.assay_names,
            'n_features': self.n_features,
            'n_samples': self.n_samples,
            'metadata': self.metadata,
        }, output_dir / MANIFEST)

        logger.info(f"Saved {self.level}-level container {self.shape} to {output_dir}")
        return output_dir

    @classmethod
    def from_directory(cls, input_dir: Union[str, Path]) -> 'ExperimentContainer':
        """Load a container written by to_directory."""
        input_dir = validate_directory_exists(input_dir)
        manifest = load_metrics_json(validate_file_exists(input_dir / MANIFEST))

        def read(filename: str, index_label: str = 'feature_id') -> pd.DataFrame:
            return pd.read_csv(validate_file_exists(input_dir / filename), sep='\t',
                               index_col=index_label, dtype={index_label: str},
                               keep_default_na=False, na_values=[''])

        assays = {name: read(f"{name}.tsv") for name in manifest['assays']}
        for matrix in assays.values():
            matrix.columns = matrix.columns.astype(str)

        return cls(
            assays,
            row_data=read(ROW_DATA_FILE),
            col_data=read(COL_DATA_FILE, 'sample_id'),
            level=manifest.get('level', 'gene'),
            metadata=manifest.get('metadata'),
        )
