"""
Integration tests for the PR review latency exporter.

This module contains end-to-end tests for the complete export workflow,
including the CLI interface, input validation and error handling.
"""

import pytest
import tempfile
import os
import csv
from pathlib import Path
from unittest.mock import Mock, patch
from datetime import datetime, timezone
from requests.adapters import HTTPAdapter

from review_latency_exporter import (
    main,
    parse_arguments,
    validate_inputs,
    validate_repository_name_format,
    parse_date_argument,
    print_summary,
)
from github_client import GitHubClient, GitHubAPIError
from latency_analyzer import LatencyAnalysisError
from csv_reporter import CSVReportError


PR_NODES = [
    {
        'number': 101,
        'title': 'Fix: race in cache',
        'createdAt': '2024-12-02T10:00:00Z',
        'mergedAt': '2024-12-03T10:00:00Z',
        'author': {'login': 'author'},
        'isDraft': False,
        'url': 'https://github.com/testowner/test-repo/pull/101'
    },
    {
        'number': 100,
        'title': 'Feature: add login',
        'createdAt': '2024-12-01T10:00:00Z',
        'mergedAt': '2024-12-01T18:00:00Z',
        'author': {'login': 'author'},
        'isDraft': False,
        'url': 'https://github.com/testowner/test-repo/pull/100'
    }
]

TIMELINES = {
    101: [
        {'__typename': 'PullRequestReview', 'state': 'CHANGES_REQUESTED',
         'submittedAt': '2024-12-02T11:00:00Z', 'author': {'login': 'reviewer'}},
        {'__typename': 'ReviewRequestedEvent', 'createdAt': '2024-12-02T12:00:00Z',
         'requestedReviewer': {'__typename': 'Team', 'slug': 'core'}},
        {'__typename': 'PullRequestReview', 'state': 'APPROVED',
         'submittedAt': '2024-12-02T12:30:00Z', 'author': {'login': 'reviewer'}},
    ],
    100: [
        {'__typename': 'LabeledEvent', 'createdAt': '2024-12-01T10:01:00Z'},
    ]
}


def read_csv_dicts(path):
    with open(path, newline='', encoding='utf-8') as csvfile:
        return list(csv.DictReader(csvfile))


class TestEndToEndExport:
    """Test cases for the complete export workflow with a mocked GitHub API."""

    def setup_method(self):
        self.tmpdir = tempfile.mkdtemp()

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    @patch.dict(os.environ, {'GITHUB_TOKEN': 'test_token'})
    @patch.object(GitHubClient, 'fetch_pr_timeline')
    @patch.object(GitHubClient, 'list_merged_pull_requests')
    def test_end_to_end_export_success(self, mock_list, mock_timeline, capsys):
        """Test both CSV files are written from fetched timelines."""
        mock_list.return_value = PR_NODES
        mock_timeline.side_effect = lambda owner, repo, number, page_size: TIMELINES[number]

        exit_code = main(['testowner/test-repo', '2024-11-01', '2024-12-31', '--output-dir', self.tmpdir])

        assert exit_code == 0

        first_review = read_csv_dicts(Path(self.tmpdir) / 'pr_first_review.csv')
        assert [row['pr_number'] for row in first_review] == ['101', '100']
        assert first_review[0]['first_review_at'] == '2024-12-02T11:00:00Z'
        assert first_review[0]['created_to_first_review_seconds'] == '3600'
        assert first_review[0]['earliest_review_requested_at'] == '2024-12-02T12:00:00Z'
        assert first_review[0]['review_requested_to_first_review_seconds'] == '-3600'
        assert first_review[1]['first_review_at'] == ''
        assert first_review[1]['is_draft'] == 'false'

        cycles = read_csv_dicts(Path(self.tmpdir) / 'pr_rereview_cycles.csv')
        assert cycles == [{
            'repo': 'testowner/test-repo',
            'pr_number': '101',
            'pr_url': 'https://github.com/testowner/test-repo/pull/101',
            'cycle_index': '1',
            'cycle_start_at': '2024-12-02T12:00:00Z',
            'cycle_end_at': '2024-12-02T12:30:00Z',
            'cycle_seconds': '1800',
            'cycle_trigger': 'REVIEW_REQUESTED_AFTER_CR',
            'end_review_state': 'APPROVED',
            'end_reviewer': 'reviewer'
        }]

        since, until = mock_list.call_args[0][2:4]
        assert since == datetime(2024, 11, 1, tzinfo=timezone.utc)
        assert until == datetime(2024, 12, 31, tzinfo=timezone.utc)

        captured = capsys.readouterr()
        assert 'PR Review Latency Results for testowner/test-repo' in captured.out
        assert 'Re-review Cycles: 1' in captured.out

    @patch.dict(os.environ, {'GITHUB_TOKEN': 'test_token'})
    @patch.object(GitHubClient, 'fetch_pr_timeline')
    @patch.object(GitHubClient, 'list_merged_pull_requests')
    def test_no_prs_found_writes_empty_reports(self, mock_list, mock_timeline):
        mock_list.return_value = []

        exit_code = main(['testowner/test-repo', '--output-dir', self.tmpdir, '--quiet'])

        assert exit_code == 0
        assert read_csv_dicts(Path(self.tmpdir) / 'pr_first_review.csv') == []
        assert read_csv_dicts(Path(self.tmpdir) / 'pr_rereview_cycles.csv') == []
        mock_timeline.assert_not_called()

    @patch.dict(os.environ, {'GITHUB_TOKEN': 'test_token'})
    @patch.object(GitHubClient, 'fetch_pr_timeline')
    @patch.object(GitHubClient, 'list_merged_pull_requests')
    def test_cleanup_option(self, mock_list, mock_timeline):
        mock_list.return_value = []
        stray = Path(self.tmpdir) / 'stale.csv'
        stray.write_text('x')

        exit_code = main(['testowner/test-repo', '--output-dir', self.tmpdir, '--cleanup', '--quiet'])

        assert exit_code == 0
        assert not stray.exists()
        assert (Path(self.tmpdir) / 'pr_first_review.csv').exists()

    @patch.dict(os.environ, {'GITHUB_TOKEN': 'test_token'})
    @patch.object(GitHubClient, 'fetch_pr_timeline')
    @patch.object(GitHubClient, 'list_merged_pull_requests')
    def test_connection_pool_follows_workers(self, mock_list, mock_timeline):
        """Test many workers get a connection pool large enough to share."""
        mock_list.return_value = PR_NODES
        mock_timeline.side_effect = lambda owner, repo, number, page_size: TIMELINES[number]

        with patch('github_client.HTTPAdapter', wraps=HTTPAdapter) as mock_adapter:
            exit_code = main(['testowner/test-repo', '2024-11-01', '2024-12-31',
                              '--output-dir', self.tmpdir, '--workers', '16', '--quiet'])

        assert exit_code == 0
        assert mock_adapter.call_args[1]['pool_maxsize'] == 16
        assert mock_timeline.call_count == len(PR_NODES)

    @patch.dict(os.environ, {'GITHUB_TOKEN': 'test_token'})
    @patch.object(GitHubClient, 'list_merged_pull_requests')
    def test_stray_files_kept_without_cleanup(self, mock_list):
        mock_list.return_value = []
        stray = Path(self.tmpdir) / 'stale.csv'
        stray.write_text('x')

        assert main(['testowner/test-repo', '--output-dir', self.tmpdir, '--quiet']) == 0
        assert stray.exists()


class TestErrorHandlingScenarios:
    """Test cases for error handling in the main workflow."""

    def setup_method(self):
        self.tmpdir = tempfile.mkdtemp()

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    @patch.dict(os.environ, {}, clear=True)
    def test_missing_github_token(self, capsys):
        exit_code = main(['testowner/test-repo', '--output-dir', self.tmpdir])

        assert exit_code == 1
        assert 'GitHub authentication failed' in capsys.readouterr().out

    @patch.dict(os.environ, {'GITHUB_TOKEN': 'test_token'})
    def test_invalid_repository(self, capsys):
        assert main(['not-a-repo', '--output-dir', self.tmpdir]) == 1
        assert "owner/repo" in capsys.readouterr().out

    @patch.dict(os.environ, {'GITHUB_TOKEN': 'test_token'})
    @patch.object(GitHubClient, 'list_merged_pull_requests')
    def test_github_api_error_aborts(self, mock_list, capsys):
        mock_list.side_effect = GitHubAPIError("HTTP error 502: bad gateway")

        exit_code = main(['testowner/test-repo', '--output-dir', self.tmpdir])

        assert exit_code == 1
        assert 'Analysis failed' in capsys.readouterr().out
        assert not (Path(self.tmpdir) / 'pr_first_review.csv').exists()

    @patch.dict(os.environ, {'GITHUB_TOKEN': 'test_token'})
    @patch('review_latency_exporter.ReviewLatencyAnalyzer')
    def test_analysis_error(self, mock_analyzer_class):
        mock_analyzer = Mock()
        mock_analyzer.fetch_merged_prs.side_effect = LatencyAnalysisError("bad input")
        mock_analyzer_class.return_value = mock_analyzer

        assert main(['testowner/test-repo', '--output-dir', self.tmpdir]) == 1

    @patch.dict(os.environ, {'GITHUB_TOKEN': 'test_token'})
    @patch('review_latency_exporter.CSVReporter')
    @patch('review_latency_exporter.ReviewLatencyAnalyzer')
    def test_csv_generation_error(self, mock_analyzer_class, mock_csv_class, capsys):
        mock_analyzer = Mock()
        mock_analyzer.fetch_merged_prs.return_value = []
        mock_analyzer.analyze_pull_requests.return_value = {'summary': {}, 'first_review_rows': [], 'cycle_rows': []}
        mock_analyzer_class.return_value = mock_analyzer

        mock_reporter = Mock()
        mock_reporter.generate_reports.side_effect = CSVReportError("disk full")
        mock_csv_class.return_value = mock_reporter

        assert main(['testowner/test-repo', '--output-dir', self.tmpdir]) == 1
        assert 'disk full' in capsys.readouterr().out

    @patch.dict(os.environ, {'GITHUB_TOKEN': 'test_token'})
    @patch('review_latency_exporter.ReviewLatencyAnalyzer')
    def test_keyboard_interrupt(self, mock_analyzer_class):
        mock_analyzer_class.side_effect = KeyboardInterrupt()

        assert main(['testowner/test-repo', '--output-dir', self.tmpdir]) == 1

    @patch.dict(os.environ, {'GITHUB_TOKEN': 'test_token'})
    @patch('review_latency_exporter.ReviewLatencyAnalyzer')
    def test_unexpected_error(self, mock_analyzer_class, capsys):
        mock_analyzer_class.side_effect = RuntimeError("surprise")

        assert main(['testowner/test-repo', '--output-dir', self.tmpdir]) == 1
        assert 'Unexpected error occurred' in capsys.readouterr().out


class TestCLIArgumentParsing:
    """Test cases for command-line argument parsing."""

    def test_defaults(self):
        args = parse_arguments(['testowner/test-repo'])

        assert args.repository == 'testowner/test-repo'
        assert args.since == '2008-01-01'
        assert args.until is None
        assert args.output_dir == '.'
        assert args.workers == 1
        assert args.page_size == 50
        assert args.cleanup is False
        assert args.verbose is False
        assert args.debug is False
        assert args.quiet is False

    def test_all_options(self):
        args = parse_arguments([
            'testowner/test-repo', '2024-01-01', '2024-06-30',
            '--output-dir', 'reports', '--workers', '4', '--page-size', '25',
            '--cleanup', '--verbose', '--debug'
        ])

        assert args.since == '2024-01-01'
        assert args.until == '2024-06-30'
        assert args.output_dir == 'reports'
        assert args.workers == 4
        assert args.page_size == 25
        assert args.cleanup is True
        assert args.verbose is True
        assert args.debug is True

    def test_short_options(self):
        args = parse_arguments(['testowner/test-repo', '-o', 'out', '-v', '-q'])

        assert args.output_dir == 'out'
        assert args.verbose is True
        assert args.quiet is True

    def test_repository_required(self):
        with pytest.raises(SystemExit):
            parse_arguments([])


class TestInputValidation:
    """Test cases for input validation."""

    def test_valid_inputs(self):
        args = parse_arguments(['testowner/test-repo', '2024-01-01', '2024-06-30'])

        owner, repo, since, until = validate_inputs(args)

        assert (owner, repo) == ('testowner', 'test-repo')
        assert since == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert until == datetime(2024, 6, 30, tzinfo=timezone.utc)

    def test_until_defaults_to_now(self):
        args = parse_arguments(['testowner/test-repo', '2024-01-01'])

        _, _, _, until = validate_inputs(args)

        assert until.tzinfo is not None
        assert until > datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_since_after_until(self):
        args = parse_arguments(['testowner/test-repo', '2024-06-30', '2024-01-01'])

        with pytest.raises(ValueError, match="SINCE must be before UNTIL"):
            validate_inputs(args)

    def test_invalid_date(self):
        args = parse_arguments(['testowner/test-repo', 'yesterday-ish'])

        with pytest.raises(ValueError, match="Invalid since date"):
            validate_inputs(args)

    def test_invalid_workers(self):
        args = parse_arguments(['testowner/test-repo', '--workers', '0'])

        with pytest.raises(ValueError, match="Workers must be at least 1"):
            validate_inputs(args)

    def test_invalid_page_size(self):
        args = parse_arguments(['testowner/test-repo', '--page-size', '500'])

        with pytest.raises(ValueError, match="Page size must be between 1 and 100"):
            validate_inputs(args)

    def test_parse_date_with_offset(self):
        assert parse_date_argument('2024-01-01T05:00:00-05:00', 'since') == datetime(2024, 1, 1, 10, tzinfo=timezone.utc)


class TestRepositoryNameValidation:
    """Test cases for repository name format validation."""

    @pytest.mark.parametrize('repository', ['owner/repo', 'my-org/my.repo', 'a/b'])
    def test_valid_names(self, repository):
        assert validate_repository_name_format(repository) is True

    @pytest.mark.parametrize('repository', ['', None, 'owner', 'owner/', '/repo', 'a/b/c', 'own er/repo', 'owner/..'])
    def test_invalid_names(self, repository):
        assert validate_repository_name_format(repository) is False


class TestSummaryPrinting:
    """Test cases for console summary output."""

    def test_print_summary_with_stats(self, capsys):
        results = {
            'summary': {
                'total_prs_analyzed': 3,
                'reviewed_prs': 2,
                'total_cycles': 1,
                'latency_stats': {
                    'created_to_first_review_seconds': {'count': 2, 'mean': 5400.0, 'median': 5400.0, 'p90': 6840.0},
                    'cycle_seconds': {'count': 0, 'mean': None, 'median': None, 'p90': None}
                }
            }
        }

        print_summary(results, 'testowner/test-repo', {'first_review': 'out/pr_first_review.csv'})

        out = capsys.readouterr().out
        assert 'PRs Analyzed: 3' in out
        assert 'Median: 1.5 hours (0.1 days)' in out
        assert 'No data available' in out
        assert 'Wrote out/pr_first_review.csv' in out
