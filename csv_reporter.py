"""
CSV reporting module for review latency analysis results.

This module exports first-review latency rows and re-review cycle rows to
two CSV files intended for pivoting in a spreadsheet.
"""

import csv
import logging
from datetime import datetime, timezone
from typing import Dict, List, Any
from pathlib import Path


FIRST_REVIEW_FILENAME = 'pr_first_review.csv'
REREVIEW_FILENAME = 'pr_rereview_cycles.csv'

FIRST_REVIEW_HEADERS = [
    'repo', 'pr_number', 'pr_url', 'pr_title', 'pr_author',
    'created_at', 'merged_at', 'is_draft',
    'first_review_at',
    'created_to_first_review_seconds',
    'earliest_review_requested_at',
    'review_requested_to_first_review_seconds',
    'last_commit_before_first_review_at',
    'last_commit_to_first_review_seconds'
]

REREVIEW_HEADERS = [
    'repo', 'pr_number', 'pr_url', 'cycle_index',
    'cycle_start_at', 'cycle_end_at', 'cycle_seconds',
    'cycle_trigger', 'end_review_state', 'end_reviewer'
]

STRAY_FILE_PATTERNS = ['*.csv', '*.tmp', '*.log']


class CSVReportError(Exception):
    """Custom exception for CSV reporting related errors."""
    pass


class CSVReporter:
    """
    CSV reporter for review latency analysis results.

    This class writes the first-review and re-review cycle datasets into an
    output directory with fixed file names and headers.
    """

    def __init__(self, output_dir: str):
        """
        Initialize CSV reporter with an output directory.

        Args:
            output_dir: Directory where both CSV files will be written

        Raises:
            CSVReportError: If output directory is invalid
        """
        if not output_dir:
            raise CSVReportError("Output directory is required")

        self.output_dir = Path(output_dir)
        self.logger = logging.getLogger(__name__)

        if self.output_dir.exists() and not self.output_dir.is_dir():
            raise CSVReportError(f"Output path is not a directory: {self.output_dir}")

        # Ensure output directory exists
        self.output_dir.mkdir(parents=True, exist_ok=True)

    @property
    def first_review_path(self) -> Path:
        return self.output_dir / FIRST_REVIEW_FILENAME

    @property
    def rereview_path(self) -> Path:
        return self.output_dir / REREVIEW_FILENAME

    def generate_reports(self, analysis_results: Dict[str, Any]) -> Dict[str, str]:
        """
        Write both CSV files from analysis results.

        Args:
            analysis_results: Dictionary with 'first_review_rows' and 'cycle_rows'

        Returns:
            Dictionary mapping 'first_review' and 'rereview_cycles' to file paths

        Raises:
            CSVReportError: If results are invalid or writing fails
        """
        self.validate_analysis_results(analysis_results)

        return {
            'first_review': self.write_first_review_csv(analysis_results['first_review_rows']),
            'rereview_cycles': self.write_rereview_csv(analysis_results['cycle_rows'])
        }

    def write_first_review_csv(self, rows: List[Dict[str, Any]]) -> str:
        """
        Write one row per PR with its first-review latency clocks.

        Args:
            rows: First-review rows keyed by column name

        Returns:
            Path to the written CSV file
        """
        return self._write_csv(self.first_review_path, FIRST_REVIEW_HEADERS, rows)

    def write_rereview_csv(self, rows: List[Dict[str, Any]]) -> str:
        """
        Write one row per re-review cycle.

        Args:
            rows: Cycle rows keyed by column name

        Returns:
            Path to the written CSV file
        """
        return self._write_csv(self.rereview_path, REREVIEW_HEADERS, rows)

    def _write_csv(self, path: Path, headers: List[str], rows: List[Dict[str, Any]]) -> str:
        try:
            with open(path, 'w', newline='', encoding='utf-8') as csvfile:
                writer = csv.writer(csvfile)
                writer.writerow(headers)
                writer.writerows(self._format_row(row, headers) for row in rows)

        except OSError as e:
            raise CSVReportError(f"Failed to write CSV report {path}: {e}")

        self.logger.info(f"Wrote {path} ({len(rows)} rows)")
        return str(path)

    def _format_row(self, row: Dict[str, Any], headers: List[str]) -> List[str]:
        return [self._format_value(row.get(header)) for header in headers]

    def _format_value(self, value: Any) -> str:
        """
        Format a single cell value for CSV output.

        None becomes an empty cell, booleans are lowercase and datetimes are
        rendered in UTC with seconds precision.
        """
        if value is None:
            return ""

        if isinstance(value, bool):
            return "true" if value else "false"

        if isinstance(value, datetime):
            return self._format_datetime(value)

        return str(value)

    def _format_datetime(self, value: datetime) -> str:
        """
        Format a datetime as an ISO 8601 UTC timestamp, e.g. 2024-12-01T10:00:00Z.

        Naive datetimes are assumed to already be in UTC.
        """
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')

    def cleanup_stray_files(self) -> List[str]:
        """
        Remove leftover CSV, temp and log files from the output directory.

        The two report files are kept.

        Returns:
            Paths of the removed files
        """
        keep = {FIRST_REVIEW_FILENAME, REREVIEW_FILENAME}
        removed = []

        for pattern in STRAY_FILE_PATTERNS:
            for path in sorted(self.output_dir.glob(pattern)):
                if path.name in keep or not path.is_file():
                    continue
                try:
                    path.unlink()
                except OSError as e:
                    raise CSVReportError(f"Failed to remove {path}: {e}")
                removed.append(str(path))
                self.logger.debug(f"Removed stray file {path}")

        if removed:
            self.logger.info(f"Removed {len(removed)} stray files from {self.output_dir}")

        return removed

    def validate_analysis_results(self, analysis_results: Dict[str, Any]) -> bool:
        """
        Validate analysis results structure for CSV generation.

        Args:
            analysis_results: Analysis results dictionary to validate

        Returns:
            True if results are valid for CSV generation

        Raises:
            CSVReportError: If validation fails
        """
        if not isinstance(analysis_results, dict):
            raise CSVReportError("Analysis results must be a dictionary")

        for key in ('first_review_rows', 'cycle_rows'):
            if key not in analysis_results:
                raise CSVReportError(f"Analysis results must contain '{key}'")

            rows = analysis_results[key]
            if not isinstance(rows, list):
                raise CSVReportError(f"'{key}' must be a list")

            for i, row in enumerate(rows):
                if not isinstance(row, dict):
                    raise CSVReportError(f"Row {i} of '{key}' must be a dictionary")
                if 'pr_number' not in row:
                    raise CSVReportError(f"Row {i} of '{key}' missing required field: pr_number")

        return True
