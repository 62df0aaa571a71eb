"""
Error types for rnaseq_counts.

Per-sample errors (QuantificationFailed, CorruptQuantification) double as
failure records in the run report. Structural errors raised during
aggregation or container assembly are always fatal.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple


class RnaseqCountsError(Exception):
    """Base error with context for reporting."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "message": str(self), **self.context}


class MalformedAnnotation(RnaseqCountsError):
    """The annotation source could not be parsed."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"Malformed annotation {source}: {reason}",
                         {"source": source, "reason": reason})
        self.source = source
        self.reason = reason


class SampleError(RnaseqCountsError):
    """An error scoped to one sample."""

    stage = "sample"

    def __init__(self, sample_id: str, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, {"sample_id": sample_id, "stage": self.stage, **(context or {})})
        self.sample_id = sample_id


class QuantificationFailed(SampleError):
    """The external quantifier exited non-zero for a sample."""

    stage = "quantification"

    def __init__(self, sample_id: str, exit_status: int, stderr: str = ""):
        tail = stderr.strip().splitlines()[-5:] if stderr else []
        super().__init__(
            sample_id,
            f"Quantification failed for sample {sample_id} (exit status {exit_status})",
            {"exit_status": exit_status, "stderr_tail": "\n".join(tail)},
        )
        self.exit_status = exit_status
        self.stderr = stderr


class CorruptQuantification(SampleError):
    """A quantifier output file is missing, empty or violates numeric invariants."""

    stage = "reading"

    def __init__(self, sample_id: str, reason: str):
        super().__init__(sample_id, f"Corrupt quantification for sample {sample_id}: {reason}",
                         {"reason": reason})
        self.reason = reason


class InconsistentTranscriptLength(RnaseqCountsError):
    def __init__(self, transcript_id: str, lengths: Mapping[str, int]):
        observed = ", ".join(f"{sample}={length}" for sample, length in lengths.items())
        super().__init__(
            f"Transcript {transcript_id} has inconsistent lengths across samples: {observed}",
            {"transcript_id": transcript_id, "lengths": dict(lengths)},
        )
        self.transcript_id = transcript_id
        self.lengths = dict(lengths)


class EmptySampleSet(RnaseqCountsError):
    def __init__(self, message: str = "No samples available for aggregation"):
        super().__init__(message)


class DimensionMismatch(RnaseqCountsError):
    pass


class MetadataCardinalityMismatch(RnaseqCountsError):
    pass


@dataclass(frozen=True)
class UnmappedTranscripts:
    """Non-fatal warning: transcripts dropped from gene-level output for lack of a gene."""

    transcript_ids: Tuple[str, ...]

    def __len__(self) -> int:
        return len(self.transcript_ids)

    def __bool__(self) -> bool:
        return bool(self.transcript_ids)

    def to_dict(self, max_listed: int = 50) -> Dict[str, Any]:
        return {
            "warning": "UnmappedTranscripts",
            "count": len(self.transcript_ids),
            "transcript_ids": list(self.transcript_ids[:max_listed]),
            "truncated": len(self.transcript_ids) > max_listed,
        }
