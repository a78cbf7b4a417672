#!/usr/bin/env python3
"""
GitHub PR Review Latency Exporter

This tool exports pull request review latency data for spreadsheet analysis:
- pr_first_review.csv: one row per merged PR with clocks from creation, the
  earliest review request and the last pre-review commit to the first review
- pr_rereview_cycles.csv: one row per re-review cycle after a
  CHANGES_REQUESTED review

Usage:
    python review_latency_exporter.py owner/repo [SINCE] [UNTIL] [options]

Environment Variables:
    GITHUB_TOKEN: GitHub personal access token (required)

Examples:
    python review_latency_exporter.py microsoft/vscode
    python review_latency_exporter.py facebook/react 2024-01-01 2024-06-30 --output-dir reports
"""

import argparse
import logging
import sys
from datetime import datetime, timezone
from typing import Optional, Tuple

from dateutil import parser as date_parser

from github_client import GitHubClient, GitHubAPIError, GitHubAuthenticationError
from latency_analyzer import ReviewLatencyAnalyzer, LatencyAnalysisError
from csv_reporter import CSVReporter, CSVReportError


DEFAULT_SINCE = '2008-01-01'


def setup_logging(level: str = "INFO", verbose: bool = False) -> None:
    """
    Configure logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        verbose: Enable verbose logging output
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if verbose:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s'
    else:
        log_format = '%(asctime)s - %(levelname)s - %(message)s'

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def parse_arguments(argv: Optional[list] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Args:
        argv: Argument list, defaults to sys.argv[1:]

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description='Export GitHub PR review latency data to CSV',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s microsoft/vscode
  %(prog)s facebook/react 2024-01-01
  %(prog)s kubernetes/kubernetes 2024-01-01 2024-03-31 --output-dir k8s --workers 4

Environment Variables:
  GITHUB_TOKEN    GitHub personal access token (required)
        """
    )

    parser.add_argument(
        'repository',
        help='GitHub repository in format owner/repo (e.g., facebook/react)'
    )

    parser.add_argument(
        'since',
        nargs='?',
        default=DEFAULT_SINCE,
        help=f'Start date, e.g. YYYY-MM-DD (default: {DEFAULT_SINCE})'
    )

    parser.add_argument(
        'until',
        nargs='?',
        default=None,
        help='End date, e.g. YYYY-MM-DD (default: now)'
    )

    parser.add_argument(
        '--output-dir', '-o',
        type=str,
        default='.',
        help='Directory for the CSV files (default: current directory)'
    )

    parser.add_argument(
        '--workers',
        type=int,
        default=1,
        help='Number of PR timelines fetched concurrently (default: 1)'
    )

    parser.add_argument(
        '--page-size',
        type=int,
        default=50,
        help='Number of PRs requested per API page (default: 50)'
    )

    parser.add_argument(
        '--cleanup',
        action='store_true',
        help='Remove other *.csv, *.tmp and *.log files from the output directory'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    parser.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Suppress all output except errors'
    )

    return parser.parse_args(argv)


def validate_repository_name_format(repository: str) -> bool:
    """
    Validate repository name format.

    Args:
        repository: Repository name to validate

    Returns:
        True if format is valid, False otherwise
    """
    if not repository or '/' not in repository:
        return False

    parts = repository.split('/')
    if len(parts) != 2:
        return False

    owner, repo = parts
    if not owner or not repo:
        return False

    invalid_chars = ['..', ' ', '\t', '\n', '\r']
    for part in parts:
        if any(char in part for char in invalid_chars):
            return False

    return True


def parse_date_argument(value: str, name: str) -> datetime:
    """
    Parse a CLI date into a timezone-aware UTC datetime.

    Args:
        value: Date or datetime string
        name: Argument name for error messages

    Returns:
        UTC datetime; naive input is taken as UTC

    Raises:
        ValueError: If the value cannot be parsed
    """
    try:
        parsed = date_parser.parse(value)
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Invalid {name} date '{value}': {e}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def validate_inputs(args: argparse.Namespace) -> Tuple[str, str, datetime, datetime]:
    """
    Validate command-line inputs.

    Args:
        args: Parsed command-line arguments

    Returns:
        Tuple of (owner, repo, since, until)

    Raises:
        ValueError: If inputs are invalid
    """
    if not validate_repository_name_format(args.repository):
        raise ValueError("Repository must be in format 'owner/repo' with valid characters")

    owner, repo = args.repository.split('/')

    since = parse_date_argument(args.since, 'since')
    until = parse_date_argument(args.until, 'until') if args.until else datetime.now(timezone.utc)

    if since >= until:
        raise ValueError("SINCE must be before UNTIL")

    if args.workers < 1:
        raise ValueError("Workers must be at least 1")

    if args.page_size < 1 or args.page_size > 100:
        raise ValueError("Page size must be between 1 and 100")

    return owner.strip(), repo.strip(), since, until


def format_seconds(seconds: Optional[float]) -> str:
    """Render a duration in seconds as hours with a days hint."""
    if seconds is None:
        return "No data available"
    hours = seconds / 3600
    return f"{hours:.1f} hours ({hours / 24:.1f} days)"


def print_summary(analysis_results: dict, repository: str, output_files: dict) -> None:
    """
    Print analysis summary to stdout.

    Args:
        analysis_results: Dictionary containing analysis results
        repository: Repository name
        output_files: Mapping of report name to written file path
    """
    summary = analysis_results.get('summary', {})
    stats = summary.get('latency_stats', {})

    print(f"\nPR Review Latency Results for {repository}")
    print("=" * (31 + len(repository)))
    print(f"PRs Analyzed: {summary.get('total_prs_analyzed', 0)}")
    print(f"Reviewed PRs: {summary.get('reviewed_prs', 0)}")
    print(f"Re-review Cycles: {summary.get('total_cycles', 0)}")
    print()

    labels = [
        ('created_to_first_review_seconds', 'Created -> First Review'),
        ('review_requested_to_first_review_seconds', 'Review Requested -> First Review'),
        ('last_commit_to_first_review_seconds', 'Last Commit -> First Review'),
        ('cycle_seconds', 'Re-review Cycle'),
    ]

    for column, label in labels:
        column_stats = stats.get(column, {})
        print(f"{label}:")
        print(f"  Median: {format_seconds(column_stats.get('median'))}")
        print(f"  P90:    {format_seconds(column_stats.get('p90'))}")

    print()
    for path in output_files.values():
        print(f"Wrote {path}")
    print("Tip: build pivot charts by week/month and overlay mean/median/p90.")


def main(argv: Optional[list] = None) -> int:
    """
    Main application entry point.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    try:
        args = parse_arguments(argv)

        if args.debug:
            log_level = "DEBUG"
        elif args.quiet:
            log_level = "ERROR"
        else:
            log_level = "INFO"

        setup_logging(log_level, args.verbose)
        logger = logging.getLogger(__name__)

        try:
            owner, repo, since, until = validate_inputs(args)
        except ValueError as e:
            logger.error(f"Invalid input: {e}")
            print(f"\nError: {e}")
            return 1

        logger.info(f"Fetching merged PRs for {owner}/{repo} between "
                    f"{since.strftime('%Y-%m-%dT%H:%M:%SZ')} and {until.strftime('%Y-%m-%dT%H:%M:%SZ')}")

        try:
            token = GitHubClient.get_token_from_env()
            github_client = GitHubClient(token, pool_size=max(args.workers, GitHubClient.DEFAULT_POOL_SIZE))
        except GitHubAuthenticationError as e:
            logger.error(f"GitHub authentication failed: {e}")
            print("\nGitHub authentication failed!")
            print("Please ensure GITHUB_TOKEN environment variable is set with a valid token.")
            return 1

        try:
            csv_reporter = CSVReporter(args.output_dir)
        except CSVReportError as e:
            logger.error(f"Invalid output directory: {e}")
            print(f"\nError: {e}")
            return 1

        analyzer = ReviewLatencyAnalyzer(github_client)

        try:
            prs = analyzer.fetch_merged_prs(owner, repo, since, until, page_size=args.page_size)
            logger.info(f"Found {len(prs)} PRs.")

            analysis_results = analyzer.analyze_pull_requests(prs, owner, repo, max_workers=args.workers)

        except (GitHubAPIError, LatencyAnalysisError) as e:
            logger.error(f"Analysis failed: {e}")
            print(f"\nAnalysis failed: {e}")
            return 1

        try:
            output_files = csv_reporter.generate_reports(analysis_results)
            if args.cleanup:
                csv_reporter.cleanup_stray_files()

        except CSVReportError as e:
            logger.error(f"CSV generation failed: {e}")
            print(f"\nFailed to write CSV reports: {e}")
            return 1

        if not args.quiet:
            print_summary(analysis_results, f"{owner}/{repo}", output_files)

        logger.info("Done.")
        return 0

    except KeyboardInterrupt:
        print("\n\nExport interrupted by user")
        return 1

    except Exception as e:
        logger = logging.getLogger(__name__)
        logger.error(f"Unexpected error: {e}", exc_info=True)
        print(f"\nUnexpected error occurred: {e}")
        print("Run with --debug for detailed error information")
        return 1


if __name__ == "__main__":
    sys.exit(main())
