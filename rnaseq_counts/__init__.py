"""
RNA-seq Counts

Drives per-sample transcript quantification and aggregates the per-sample
outputs into aligned transcript- and gene-level count matrices.
"""

__version__ = "1.0.0"
