"""
GitHub GraphQL API client for review latency analysis.

This module provides a client for the GitHub GraphQL API to list merged
pull requests and fetch their complete review-related timelines.
"""

import os
import logging
import requests
from requests.adapters import HTTPAdapter
from datetime import datetime
from typing import Dict, List, Optional, Any

from timeline_events import parse_timestamp


class GitHubAPIError(Exception):
    """Custom exception for GitHub API related errors."""
    pass


class GitHubRateLimitError(GitHubAPIError):
    """Exception raised when GitHub API rate limit is exceeded."""
    pass


class GitHubAuthenticationError(GitHubAPIError):
    """Exception raised when GitHub API authentication fails."""
    pass


LIST_PRS_QUERY = """
query($owner:String!, $name:String!, $states:[PullRequestState!], $pageSize:Int!, $after:String) {
  repository(owner:$owner, name:$name) {
    pullRequests(states:$states, orderBy:{field:CREATED_AT, direction:DESC}, first:$pageSize, after:$after) {
      pageInfo { hasNextPage endCursor }
      nodes {
        number
        title
        createdAt
        mergedAt
        author { login }
        isDraft
        url
      }
    }
  }
}
"""

TIMELINE_QUERY = """
query($owner:String!, $name:String!, $number:Int!, $pageSize:Int!, $after:String) {
  repository(owner:$owner, name:$name) {
    pullRequest(number:$number) {
      author { login }
      timelineItems(first:$pageSize, after:$after, itemTypes:[
        PULL_REQUEST_REVIEW,
        REVIEW_REQUESTED_EVENT,
        REVIEW_REQUEST_REMOVED_EVENT,
        PULL_REQUEST_COMMIT,
        READY_FOR_REVIEW_EVENT,
        CONVERT_TO_DRAFT_EVENT,
        REVIEW_DISMISSED_EVENT
      ]) {
        pageInfo { hasNextPage endCursor }
        nodes {
          __typename
          ... on PullRequestReview {
            state
            submittedAt
            author { login }
          }
          ... on ReviewRequestedEvent {
            createdAt
            requestedReviewer {
              __typename
              ... on User { login }
              ... on Team { slug }
            }
          }
          ... on ReviewRequestRemovedEvent {
            createdAt
            requestedReviewer {
              __typename
              ... on User { login }
              ... on Team { slug }
            }
          }
          ... on PullRequestCommit {
            commit { committedDate oid }
            url
          }
          ... on ReadyForReviewEvent { createdAt }
          ... on ConvertToDraftEvent { createdAt }
          ... on ReviewDismissedEvent { createdAt }
        }
      }
    }
  }
}
"""


class GitHubClient:
    """
    Client for the GitHub GraphQL API.

    This client handles authentication and error classification, and provides
    paginated access to merged pull requests and their timeline items. Any API
    failure is raised to the caller; there is no retry.
    """

    GRAPHQL_URL = "https://api.github.com/graphql"
    DEFAULT_POOL_SIZE = 10

    def __init__(self, token: str, pool_size: int = DEFAULT_POOL_SIZE):
        """
        Initialize GitHub client with authentication token.

        Args:
            token: GitHub personal access token for API authentication
            pool_size: Maximum number of pooled connections; should be at least
                the number of threads sharing this client

        Raises:
            GitHubAuthenticationError: If token is empty or None
        """
        if not token:
            raise GitHubAuthenticationError("GitHub token is required")

        self.token = token
        self.session = requests.Session()
        self.session.headers.update({
            'Authorization': f'bearer {token}',
            'Content-Type': 'application/json',
            'User-Agent': 'PR-Review-Latency-Exporter/1.0'
        })

        # One pooled connection per worker thread sharing the session
        adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
        self.session.mount('https://', adapter)

        self.logger = logging.getLogger(__name__)

    @classmethod
    def get_token_from_env(cls) -> str:
        """
        Read GitHub token from GITHUB_TOKEN environment variable.

        Returns:
            GitHub token from environment variable

        Raises:
            GitHubAuthenticationError: If GITHUB_TOKEN is not set
        """
        token = os.environ.get('GITHUB_TOKEN')
        if not token:
            raise GitHubAuthenticationError(
                "GITHUB_TOKEN environment variable is not set"
            )
        return token

    def _is_rate_limited(self, response: requests.Response) -> bool:
        """Check whether a failed response was caused by an exhausted rate limit."""
        if response.status_code == 429:
            return True
        return (response.status_code == 403 and
                response.headers.get('X-RateLimit-Remaining') == '0')

    def execute_query(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Execute a GraphQL query and return its ``data`` payload.

        Args:
            query: GraphQL query document
            variables: Query variables

        Returns:
            The ``data`` object of the GraphQL response

        Raises:
            GitHubAuthenticationError: If the token is rejected
            GitHubRateLimitError: If the rate limit is exhausted
            GitHubAPIError: On any other HTTP or GraphQL error
        """
        try:
            response = self.session.post(
                self.GRAPHQL_URL,
                json={'query': query, 'variables': variables or {}}
            )
        except requests.RequestException as e:
            raise GitHubAPIError(f"Failed to connect to GitHub API: {e}")

        if response.status_code == 401:
            raise GitHubAuthenticationError("GitHub token is invalid or expired")
        elif self._is_rate_limited(response):
            reset = response.headers.get('X-RateLimit-Reset')
            reset_str = datetime.fromtimestamp(int(reset)).strftime('%Y-%m-%d %H:%M:%S') if reset else 'unknown'
            raise GitHubRateLimitError(f"GitHub API rate limit exceeded (resets at {reset_str})")
        elif response.status_code != 200:
            raise GitHubAPIError(f"HTTP error {response.status_code}: {response.text}")

        try:
            body = response.json()
        except ValueError as e:
            raise GitHubAPIError(f"Invalid JSON in GitHub API response: {e}")

        errors = body.get('errors')
        if errors:
            if any(error.get('type') == 'RATE_LIMITED' for error in errors if isinstance(error, dict)):
                raise GitHubRateLimitError(f"GraphQL rate limit exceeded: {errors}")
            raise GitHubAPIError(f"GraphQL errors: {errors}")

        return body.get('data') or {}

    def list_merged_pull_requests(self, owner: str, name: str, since: datetime, until: datetime,
                                  page_size: int = 50) -> List[Dict[str, Any]]:
        """
        List merged pull requests created since ``since`` and merged within [since, until].

        Pull requests are paged newest first, so pagination stops as soon as a
        PR created before ``since`` is seen.

        Args:
            owner: Repository owner (user or organization)
            name: Repository name
            since: Lower bound for creation and merge time (timezone-aware)
            until: Upper bound for merge time (timezone-aware)
            page_size: Number of PRs requested per page

        Returns:
            List of raw pull request nodes

        Raises:
            GitHubAPIError: If any page request fails
        """
        prs = []
        after = None

        self.logger.info(f"Fetching merged pull requests from {owner}/{name}")

        while True:
            data = self.execute_query(LIST_PRS_QUERY, {
                'owner': owner,
                'name': name,
                'states': ['MERGED'],
                'pageSize': page_size,
                'after': after
            })

            connection = (data.get('repository') or {}).get('pullRequests') or {}
            nodes = connection.get('nodes') or []

            reached_since = False
            for pr in nodes:
                if not isinstance(pr, dict):
                    continue

                created_at = parse_timestamp(pr.get('createdAt'))
                if created_at is not None and created_at < since:
                    reached_since = True
                    break

                merged_at = parse_timestamp(pr.get('mergedAt'))
                if merged_at is None:
                    continue
                if merged_at < since or merged_at > until:
                    continue

                prs.append(pr)

            if reached_since:
                self.logger.debug(f"Reached PRs created before {since}, stopping pagination")
                break

            page_info = connection.get('pageInfo') or {}
            if not page_info.get('hasNextPage'):
                break

            after = page_info.get('endCursor')

        self.logger.info(f"Fetched {len(prs)} merged pull requests from {owner}/{name}")
        return prs

    def fetch_pr_timeline(self, owner: str, name: str, number: int,
                          page_size: int = 100) -> List[Dict[str, Any]]:
        """
        Fetch every review-related timeline item of a pull request.

        Args:
            owner: Repository owner (user or organization)
            name: Repository name
            number: Pull request number
            page_size: Number of timeline items requested per page

        Returns:
            Concatenated timeline nodes from all pages, in API order

        Raises:
            GitHubAPIError: If any page request fails
        """
        items = []
        after = None

        while True:
            data = self.execute_query(TIMELINE_QUERY, {
                'owner': owner,
                'name': name,
                'number': number,
                'pageSize': page_size,
                'after': after
            })

            pull_request = (data.get('repository') or {}).get('pullRequest')
            if not pull_request:
                self.logger.warning(f"Pull request #{number} not found in {owner}/{name}")
                break

            timeline = pull_request.get('timelineItems') or {}
            items.extend(timeline.get('nodes') or [])

            page_info = timeline.get('pageInfo') or {}
            if not page_info.get('hasNextPage'):
                break

            after = page_info.get('endCursor')

        self.logger.debug(f"Fetched {len(items)} timeline items for PR #{number}")
        return items
