"""
Quantification module for transcript abundance estimation.

This module runs the external transcript quantifier once per sample
under a bounded worker pool and collects per-sample outcomes according
to the configured failure policy.
"""

import logging
import subprocess
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from .errors import QuantificationFailed
from .samples import Sample

logger = logging.getLogger(__name__)


class FailurePolicy(str, Enum):
    ABORT_ALL = "abort_all"
    SKIP_AND_CONTINUE = "skip_and_continue"


@dataclass(frozen=True)
class QuantificationConfig:
    """Settings shared read-only by every worker."""

    parallelism: int = 1
    threads_per_sample: int = 4
    on_failure: FailurePolicy = FailurePolicy.ABORT_ALL
    overwrite: bool = False

    def __post_init__(self):
        if self.parallelism < 1:
            raise ValueError(f"parallelism must be a positive integer, got {self.parallelism}")
        if self.threads_per_sample < 1:
            raise ValueError(f"threads_per_sample must be a positive integer, got {self.threads_per_sample}")
        object.__setattr__(self, 'on_failure', FailurePolicy(self.on_failure))


@dataclass(frozen=True)
class ProcessResult:
    exit_status: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_status == 0


Quantifier = Callable[[Path, Path, Path, int, Path], ProcessResult]


class SalmonQuantifier:
    """Runs `salmon quant` for one paired-end sample."""

    def __init__(
        self,
        executable: str = 'salmon',
        lib_type: str = 'A',
        extra_args: Sequence[str] = ('--validateMappings',)
    ):
        self.executable = executable
        self.lib_type = lib_type
        self.extra_args = list(extra_args)

    def build_command(
        self,
        index: Path,
        fastq_1: Path,
        fastq_2: Path,
        threads: int,
        output_dir: Path
    ) -> List[str]:
        return [
            self.executable, 'quant',
            '-i', str(index),
            '-l', self.lib_type,
            '-1', str(fastq_1),
            '-2', str(fastq_2),
            '-p', str(threads),
            *self.extra_args,
            '-o', str(output_dir),
        ]

    def __call__(
        self,
        index: Path,
        fastq_1: Path,
        fastq_2: Path,
        threads: int,
        output_dir: Path
    ) -> ProcessResult:
        cmd = self.build_command(index, fastq_1, fastq_2, threads, output_dir)
        logger.debug(f"Running: {' '.join(cmd)}")

        start = time.monotonic()
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except FileNotFoundError as e:
            return ProcessResult(127, "", str(e), time.monotonic() - start)
        except OSError as e:
            # found but could not be executed
            return ProcessResult(126, "", str(e), time.monotonic() - start)

        return ProcessResult(result.returncode, result.stdout, result.stderr, time.monotonic() - start)


@dataclass
class QuantificationResult:
    """Outputs of successful samples (in input order) plus failure records."""

    outputs: Dict[str, Path] = field(default_factory=dict)
    failures: List[QuantificationFailed] = field(default_factory=list)
    reused: List[str] = field(default_factory=list)

    @property
    def failed_samples(self) -> List[str]:
        return [failure.sample_id for failure in self.failures]


def _quantify_sample(
    sample: Sample,
    index: Path,
    config: QuantificationConfig,
    quantifier: Quantifier
) -> ProcessResult:
    """Worker task: quantify one sample into its own output directory."""
    sample.output_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Quantifying {sample.sample_id}")
    return quantifier(index, sample.fastq_1, sample.fastq_2, config.threads_per_sample, sample.output_dir)


def run_quantification(
    samples: Sequence[Sample],
    index: Union[str, Path],
    config: QuantificationConfig = QuantificationConfig(),
    quantifier: Optional[Quantifier] = None
) -> QuantificationResult:
    """
    Run the quantifier over all samples with bounded concurrency.

    At most `parallelism` samples are in flight; the next sample is only
    submitted when a running one completes, so under abort_all no further
    sample is started after the first failure.

    Args:
        samples: Sample descriptors; their order fixes the output order
        index: Prebuilt quantifier index
        config: Parallelism, per-sample threads and failure policy
        quantifier: Callable invoked per sample (default: SalmonQuantifier)

    Returns:
        QuantificationResult with outputs keyed by sample id in input order

    Raises:
        QuantificationFailed: On the first failure under the abort_all policy
        ValueError: If sample ids are not unique
    """
    index = Path(index)
    quantifier = quantifier or SalmonQuantifier()

    sample_ids = [sample.sample_id for sample in samples]
    if len(set(sample_ids)) != len(sample_ids):
        raise ValueError("Sample ids must be unique within a run")

    logger.info(
        f"Running quantification on {len(samples)} samples "
        f"({config.parallelism} parallel, {config.threads_per_sample} threads each)"
    )

    result = QuantificationResult()
    completed: Dict[str, Path] = {}
    failures: Dict[str, QuantificationFailed] = {}
    pending = deque()
    for sample in samples:
        if sample.quant_file.is_file() and not config.overwrite:
            logger.info(f"Reusing existing output for {sample.sample_id}: {sample.quant_file}")
            result.reused.append(sample.sample_id)
            completed[sample.sample_id] = sample.quant_file
        else:
            pending.append(sample)

    with ThreadPoolExecutor(max_workers=config.parallelism) as executor:
        running: Dict[Future, Sample] = {}

        def submit_next() -> None:
            if pending:
                sample = pending.popleft()
                running[executor.submit(_quantify_sample, sample, index, config, quantifier)] = sample

        for _ in range(config.parallelism):
            submit_next()

        # outcomes are recorded by this thread only
        while running:
            done, _ = wait(running, return_when=FIRST_COMPLETED)
            for future in done:
                sample = running.pop(future)
                try:
                    outcome = future.result()
                except Exception as e:
                    logger.debug(f"Quantifier raised for {sample.sample_id}", exc_info=True)
                    outcome = ProcessResult(-1, "", f"{type(e).__name__}: {e}")

                if outcome.success:
                    logger.info(f"Finished {sample.sample_id} in {outcome.duration_seconds:.1f}s")
                    completed[sample.sample_id] = sample.quant_file
                else:
                    failure = QuantificationFailed(sample.sample_id, outcome.exit_status, outcome.stderr)
                    if config.on_failure is FailurePolicy.ABORT_ALL:
                        logger.error(
                            f"{failure}; skipping {len(pending)} pending samples, "
                            f"discarding {len(running)} in flight"
                        )
                        pending.clear()
                        raise failure
                    logger.warning(f"{failure}; continuing with remaining samples")
                    failures[sample.sample_id] = failure

                submit_next()

    for sample_id in sample_ids:
        if sample_id in completed:
            result.outputs[sample_id] = completed[sample_id]
        elif sample_id in failures:
            result.failures.append(failures[sample_id])

    logger.info(
        f"Quantification finished: {len(result.outputs)} succeeded, {len(result.failures)} failed"
    )
    return result
