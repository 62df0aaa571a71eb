"""
Utility functions for rnaseq_counts.

This module provides common utility functions used across the package,
including logging setup, file validation, and small I/O helpers.
"""

import gzip
import json
import logging
from pathlib import Path
from typing import Any, Dict, IO, Union

from rich.console import Console
from rich.logging import RichHandler

console = Console()

def setup_logging(level: int = logging.INFO) -> None:
    """
    Set up logging with Rich handler for colored output.
    
    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
        force=True,
    )

def validate_file_exists(file_path: Union[str, Path]) -> Path:
    """
    Validate that a file exists and return Path object.
    
    Args:
        file_path: Path to file
        
    Returns:
        Path object if file exists
        
    Raises:
        FileNotFoundError: If file doesn't exist
    """
    path = Path(file_path)
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")
    return path

def validate_directory_exists(dir_path: Union[str, Path], create: bool = False) -> Path:
    """
    Validate that a directory exists, optionally create it.
    
    Args:
        dir_path: Path to directory
        create: Whether to create directory if it doesn't exist
        
    Returns:
        Path object
        
    Raises:
        FileNotFoundError: If directory doesn't exist and create=False
    """
    path = Path(dir_path)
    if not path.exists():
        if create:
            path.mkdir(parents=True, exist_ok=True)
        else:
            raise FileNotFoundError(f"Directory not found: {path}")
    return path

def is_gzipped(file_path: Union[str, Path]) -> bool:
    """
    Check if a file is gzipped.
    
    Args:
        file_path: Path to file
        
    Returns:
        True if file is gzipped
    """
    with open(file_path, 'rb') as f:
        return f.read(2) == b'\x1f\x8b'

def open_text(file_path: Union[str, Path]) -> IO[str]:
    """Open a plain or gzip-compressed text file for reading."""
    if is_gzipped(file_path):
        return gzip.open(file_path, 'rt')
    return open(file_path, 'r')

def save_metrics_json(metrics: Dict[str, Any], output_file: Union[str, Path]) -> None:
    """
    Save metrics dictionary to JSON file.
    
    Args:
        metrics: Dictionary of metrics
        output_file: Output JSON file path
    """
    with open(output_file, 'w') as f:
        json.dump(metrics, f, indent=2)

def load_metrics_json(json_file: Union[str, Path]) -> Dict[str, Any]:
    """
    Load metrics from JSON file.
    
    Args:
        json_file: Path to JSON file
        
    Returns:
        Dictionary of metrics
    """
    with open(json_file, 'r') as f:
        return json.load(f)
