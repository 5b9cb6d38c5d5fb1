"""
Utility functions for the reconciliation system.

This module contains helper functions that are used across the system but
are not directly related to transaction matching.
"""

import os
import pathlib
import logging

logger = logging.getLogger(__name__)

def setup_logging(debug=False, log_level='warning'):
    """Configure logging for the application.

    Diagnostics always go to stderr so that stdout carries only the report.
    A log file is added when the LOG_FILE environment variable is set.

    Returns:
        str or None: Path of the log file, if one was configured
    """
    if debug:
        level = logging.DEBUG
    else:
        level = getattr(logging, log_level.upper(), logging.WARNING)

    format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    handlers = [logging.StreamHandler()]

    log_file = os.getenv('LOG_FILE')
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format=format,
        handlers=handlers,
        force=True
    )

    return log_file

def resolve_output_path(output_path, default_name):
    """
    Resolve where an output file should be written.

    Args:
        output_path (str or pathlib.Path): File path or directory
        default_name (str): File name used when output_path is a directory

    Returns:
        pathlib.Path: Path of the file to write

    Side Effects:
        - Creates the parent directory if it doesn't exist
    """
    output_path = pathlib.Path(output_path)
    if output_path.is_dir() or not output_path.suffix:
        output_path = output_path / default_name

    logger.debug(f"Creating output directory {output_path.parent}")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    return output_path
