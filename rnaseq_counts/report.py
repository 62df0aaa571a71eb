"""
Run report module.

Collects successful samples, per-sample failures and non-fatal warnings
of one run, and writes them as JSON and as an HTML summary.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from jinja2 import Environment, PackageLoader, select_autoescape

from . import __version__
from .errors import SampleError, UnmappedTranscripts
from .utils import save_metrics_json, validate_directory_exists

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    """Outcome of one run, returned even when the run succeeds."""

    n_requested: int = 0
    successful: Dict[str, Path] = field(default_factory=dict)
    failures: List[SampleError] = field(default_factory=list)
    unmapped: Optional[UnmappedTranscripts] = None
    containers: Dict[str, Tuple[int, int]] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now().strftime('%Y-%m-%d %H:%M:%S'))

    def exclude(self, failure: SampleError) -> None:
        """Move a sample from the successful set to the failures."""
        self.successful.pop(failure.sample_id, None)
        self.failures.append(failure)

    @property
    def failed_samples(self) -> List[str]:
        return [failure.sample_id for failure in self.failures]

    def to_dict(self) -> Dict[str, Any]:
        warnings = [self.unmapped.to_dict()] if self.unmapped else []
        return {
            'version': __version__,
            'timestamp': self.timestamp,
            'n_requested': self.n_requested,
            'successful': {sample: str(path) for sample, path in self.successful.items()},
            'failures': [failure.to_dict() for failure in self.failures],
            'warnings': warnings,
            'containers': {level: list(shape) for level, shape in self.containers.items()},
        }

    def save(self, output_dir: Union[str, Path], html: bool = True) -> Path:
        """
        Write run_report.json (and run_report.html) into output_dir.

        Args:
            output_dir: Destination directory (created if needed)
            html: Also render the HTML summary

        Returns:
            Path of the JSON report
        """
        output_dir = validate_directory_exists(output_dir, create=True)
        json_file = output_dir / 'run_report.json'
        save_metrics_json(self.to_dict(), json_file)
        if html:
            generate_html_report(self, output_dir / 'run_report.html')
        logger.info(f"Run report saved to {json_file}")
        return json_file


def generate_html_report(
    report: RunReport,
    output_file: Path,
    title: str = "RNA-seq Quantification Run Report"
) -> Path:
    """Render the run report to HTML."""
    env = Environment(
        loader=PackageLoader('rnaseq_counts', 'templates'),
        autoescape=select_autoescape(['html', 'xml'])
    )
    template = env.get_template('run_report.html')
    html_content = template.render(title=title, report=report.to_dict())

    with open(output_file, 'w') as f:
        f.write(html_content)

    return output_file
