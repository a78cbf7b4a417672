"""
Review latency analysis module.

This module orchestrates per-PR timeline retrieval, event normalization and
metric derivation, and assembles the two exported datasets: first-review
latency rows and re-review cycle rows.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, List, Any, Optional, Tuple

import pandas as pd

from github_client import GitHubClient
from review_metrics import (
    FirstReviewMetrics,
    PullRequestRecord,
    ReReviewCycle,
    compute_first_review_metrics,
    compute_rereview_cycles,
)
from timeline_events import parse_timeline_events, parse_timestamp


FIRST_REVIEW_LATENCY_COLUMNS = [
    'created_to_first_review_seconds',
    'review_requested_to_first_review_seconds',
    'last_commit_to_first_review_seconds',
]

CYCLE_LATENCY_COLUMNS = ['cycle_seconds']


class LatencyAnalysisError(Exception):
    """Custom exception for review latency analysis related errors."""
    pass


class ReviewLatencyAnalyzer:
    """
    Analyzer for pull request review latency.

    This class collects merged pull requests and their timelines through a
    GitHubClient and derives first-review metrics and re-review cycles for
    each of them.
    """

    def __init__(self, github_client: GitHubClient):
        """
        Initialize the analyzer with a GitHub client.

        Args:
            github_client: GitHubClient instance for API interactions

        Raises:
            LatencyAnalysisError: If github_client is None or invalid
        """
        if not github_client:
            raise LatencyAnalysisError("GitHubClient is required")

        if not isinstance(github_client, GitHubClient):
            raise LatencyAnalysisError("Invalid GitHubClient instance provided")

        self.github_client = github_client
        self.logger = logging.getLogger(__name__)

    def fetch_merged_prs(self, owner: str, repo: str, since: datetime, until: datetime,
                         page_size: int = 50) -> List[PullRequestRecord]:
        """
        Collect merged pull requests for the given window.

        Args:
            owner: Repository owner (user or organization)
            repo: Repository name
            since: Only PRs created and merged on or after this moment
            until: Only PRs merged on or before this moment
            page_size: Number of PRs requested per API page

        Returns:
            List of PullRequestRecord, newest first

        Raises:
            LatencyAnalysisError: If the inputs are invalid
            GitHubAPIError: If GitHub API requests fail
        """
        if not owner or not repo:
            raise LatencyAnalysisError("Repository owner and name are required")

        if since >= until:
            raise LatencyAnalysisError("since must be before until")

        nodes = self.github_client.list_merged_pull_requests(owner, repo, since, until, page_size=page_size)

        records = []
        for node in nodes:
            record = self._build_pr_record(node)
            if record is not None:
                records.append(record)

        self.logger.info(f"Collected {len(records)} merged PRs from {owner}/{repo}")
        return records

    def _build_pr_record(self, node: Dict[str, Any]) -> Optional[PullRequestRecord]:
        """
        Convert a raw pull request node into a PullRequestRecord.

        Args:
            node: Pull request node from the GraphQL API

        Returns:
            PullRequestRecord, or None if the node has no usable number
        """
        if not isinstance(node, dict) or not node.get('number'):
            self.logger.warning(f"Skipping pull request node without number: {node!r}")
            return None

        created_at = parse_timestamp(node.get('createdAt'))
        if created_at is None:
            self.logger.warning(f"PR #{node['number']} has missing or malformed createdAt")

        author = node.get('author')

        return PullRequestRecord(
            number=node['number'],
            title=node.get('title') or '',
            url=node.get('url') or '',
            author=author.get('login') if isinstance(author, dict) else None,
            created_at=created_at,
            merged_at=parse_timestamp(node.get('mergedAt')),
            is_draft=bool(node.get('isDraft', False))
        )

    def analyze_pull_requests(self, prs: List[PullRequestRecord], owner: str, repo: str,
                              max_workers: int = 1, page_size: int = 100) -> Dict[str, Any]:
        """
        Derive first-review metrics and re-review cycles for every pull request.

        Timelines may be fetched concurrently; results are always assembled in
        the order of ``prs``.

        Args:
            prs: Pull requests to analyze
            owner: Repository owner (user or organization)
            repo: Repository name
            max_workers: Number of PRs processed concurrently
            page_size: Number of timeline items requested per API page

        Returns:
            Dictionary with 'first_review_rows', 'cycle_rows' and 'summary'

        Raises:
            LatencyAnalysisError: If the inputs are invalid
            GitHubAPIError: If fetching any timeline fails
        """
        if not owner or not repo:
            raise LatencyAnalysisError("Repository owner and name are required for analysis")

        if max_workers < 1:
            raise LatencyAnalysisError("max_workers must be at least 1")

        repository = f"{owner}/{repo}"

        if not prs:
            self.logger.info("No PRs to analyze")
            return self._format_analysis_results(repository, [], [])

        self.logger.info(f"Analyzing review latency for {len(prs)} PRs from {repository}")

        total = len(prs)

        def analyze(position: int) -> Tuple[FirstReviewMetrics, Tuple[ReReviewCycle, ...]]:
            pr = prs[position]
            self.logger.info(f"[{position + 1}/{total}] PR #{pr.number} - fetching timeline...")
            items = self.github_client.fetch_pr_timeline(owner, repo, pr.number, page_size=page_size)
            return self.analyze_timeline(pr, items)

        if max_workers == 1:
            results = [analyze(position) for position in range(total)]
        else:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                # map() yields in submission order, keeping rows in PR order
                results = list(executor.map(analyze, range(total)))

        first_review_rows = []
        cycle_rows = []

        for pr, (metrics, cycles) in zip(prs, results):
            first_review_rows.append(self.build_first_review_row(repository, pr, metrics))
            cycle_rows.extend(self.build_cycle_row(repository, pr, cycle) for cycle in cycles)

        return self._format_analysis_results(repository, first_review_rows, cycle_rows)

    def analyze_timeline(self, pr: PullRequestRecord,
                         items: List[Dict[str, Any]]) -> Tuple[FirstReviewMetrics, Tuple[ReReviewCycle, ...]]:
        """
        Normalize one PR's raw timeline and derive both metric sets from it.

        Args:
            pr: Pull request metadata
            items: Raw timeline nodes for the PR

        Returns:
            Tuple of (first review metrics, re-review cycles)
        """
        events = parse_timeline_events(items)
        metrics = compute_first_review_metrics(pr, events)
        cycles = compute_rereview_cycles(events, pr.author)

        self.logger.debug(f"PR #{pr.number}: {len(events)} events, first review at "
                          f"{metrics.first_review_at}, {len(cycles)} re-review cycles")

        return metrics, cycles

    @staticmethod
    def build_first_review_row(repository: str, pr: PullRequestRecord,
                               metrics: FirstReviewMetrics) -> Dict[str, Any]:
        """Build the export row for a PR's first-review metrics."""
        return {
            'repo': repository,
            'pr_number': pr.number,
            'pr_url': pr.url,
            'pr_title': pr.title,
            'pr_author': pr.author,
            'created_at': metrics.created_at,
            'merged_at': pr.merged_at,
            'is_draft': pr.is_draft,
            'first_review_at': metrics.first_review_at,
            'created_to_first_review_seconds': metrics.created_to_first_review_seconds,
            'earliest_review_requested_at': metrics.earliest_review_requested_at,
            'review_requested_to_first_review_seconds': metrics.review_requested_to_first_review_seconds,
            'last_commit_before_first_review_at': metrics.last_commit_before_first_review_at,
            'last_commit_to_first_review_seconds': metrics.last_commit_to_first_review_seconds
        }

    @staticmethod
    def build_cycle_row(repository: str, pr: PullRequestRecord, cycle: ReReviewCycle) -> Dict[str, Any]:
        """Build the export row for one re-review cycle."""
        return {
            'repo': repository,
            'pr_number': pr.number,
            'pr_url': pr.url,
            'cycle_index': cycle.index,
            'cycle_start_at': cycle.start_at,
            'cycle_end_at': cycle.end_at,
            'cycle_seconds': cycle.seconds,
            'cycle_trigger': cycle.trigger.value,
            'end_review_state': cycle.end_review_state,
            'end_reviewer': cycle.end_reviewer
        }

    def _format_analysis_results(self, repository: str, first_review_rows: List[Dict[str, Any]],
                                 cycle_rows: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Attach summary statistics to the two row collections.

        Args:
            repository: Repository name in owner/repo format
            first_review_rows: One row per analyzed PR
            cycle_rows: One row per re-review cycle

        Returns:
            Dictionary with summary statistics and both row collections
        """
        reviewed_prs = sum(1 for row in first_review_rows if row['first_review_at'] is not None)

        summary = {
            'repository_name': repository,
            'total_prs_analyzed': len(first_review_rows),
            'reviewed_prs': reviewed_prs,
            'total_cycles': len(cycle_rows),
            'latency_stats': {}
        }

        summary['latency_stats'].update(summarize_latency_columns(first_review_rows, FIRST_REVIEW_LATENCY_COLUMNS))
        summary['latency_stats'].update(summarize_latency_columns(cycle_rows, CYCLE_LATENCY_COLUMNS))

        self.logger.info(f"Analysis complete: {len(first_review_rows)} PRs, {reviewed_prs} reviewed, "
                         f"{len(cycle_rows)} re-review cycles")

        return {
            'summary': summary,
            'first_review_rows': first_review_rows,
            'cycle_rows': cycle_rows
        }


def summarize_latency_columns(rows: List[Dict[str, Any]], columns: List[str]) -> Dict[str, Dict[str, Any]]:
    """
    Compute count, mean, median and p90 for latency columns, ignoring nulls.

    Args:
        rows: Export rows
        columns: Names of the numeric columns to summarize

    Returns:
        Mapping of column name to its statistics; statistics are None when a
        column has no values
    """
    frame = pd.DataFrame(rows, columns=columns)
    stats = {}

    for column in columns:
        values = pd.to_numeric(frame[column], errors='coerce').dropna()
        if values.empty:
            stats[column] = {'count': 0, 'mean': None, 'median': None, 'p90': None}
            continue

        stats[column] = {
            'count': int(values.count()),
            'mean': round(float(values.mean()), 2),
            'median': round(float(values.median()), 2),
            'p90': round(float(values.quantile(0.9)), 2)
        }

    return stats
