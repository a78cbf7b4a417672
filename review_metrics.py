"""
Review latency metric derivation.

This module turns a normalized timeline event sequence into first-review
latency metrics and re-review cycles. Every function here is pure: it reads
an immutable event sequence and returns fresh, frozen results.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from timeline_events import (
    CHANGES_REQUESTED,
    Commit,
    EventKind,
    Review,
    ReviewRequested,
    TimelineEvent,
    events_of_kind,
)


class CycleTrigger(str, Enum):
    """Event kind that started a re-review cycle."""
    AUTHOR_COMMIT_AFTER_CR = 'AUTHOR_COMMIT_AFTER_CR'
    REVIEW_REQUESTED_AFTER_CR = 'REVIEW_REQUESTED_AFTER_CR'
    # Part of the vocabulary, but CR reviews without follow-up emit no cycle
    CHANGES_REQUESTED_NO_FOLLOWUP = 'CHANGES_REQUESTED_NO_FOLLOWUP'


@dataclass(frozen=True)
class PullRequestRecord:
    """Minimal pull request metadata needed for the exported rows."""
    number: int
    title: str
    url: str
    author: Optional[str]
    created_at: Optional[datetime]
    merged_at: Optional[datetime]
    is_draft: bool = False


@dataclass(frozen=True)
class FirstReviewMetrics:
    created_at: Optional[datetime]
    first_review_at: Optional[datetime]
    created_to_first_review_seconds: Optional[int]
    earliest_review_requested_at: Optional[datetime]
    review_requested_to_first_review_seconds: Optional[int]
    last_commit_before_first_review_at: Optional[datetime]
    last_commit_to_first_review_seconds: Optional[int]


@dataclass(frozen=True)
class ReReviewCycle:
    index: int
    start_at: datetime
    end_at: datetime
    seconds: int
    trigger: CycleTrigger
    end_review_state: str
    end_reviewer: Optional[str]


def seconds_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[int]:
    """
    Whole seconds from ``start`` to ``end``, truncated toward zero.

    Negative results are returned as-is. Returns None if either endpoint is None.
    """
    if start is None or end is None:
        return None
    return int((end - start).total_seconds())


def compute_first_review_metrics(pr: PullRequestRecord,
                                 events: Sequence[TimelineEvent]) -> FirstReviewMetrics:
    """
    Calculate first-review latency clocks for a single pull request.

    Args:
        pr: Pull request metadata
        events: Normalized, time-ordered timeline events for the PR

    Returns:
        FirstReviewMetrics with null fields wherever an ingredient is missing
    """
    first_review = next((event for event in events if isinstance(event, Review)), None)
    first_review_at = first_review.at if first_review else None

    request_times = [event.at for event in events if isinstance(event, ReviewRequested)]
    earliest_request_at = min(request_times) if request_times else None

    last_commit_at = None
    if first_review_at is not None:
        commit_times = [
            event.at for event in events
            if isinstance(event, Commit) and event.at < first_review_at
        ]
        last_commit_at = max(commit_times) if commit_times else None

    return FirstReviewMetrics(
        created_at=pr.created_at,
        first_review_at=first_review_at,
        created_to_first_review_seconds=seconds_between(pr.created_at, first_review_at),
        earliest_review_requested_at=earliest_request_at,
        review_requested_to_first_review_seconds=seconds_between(earliest_request_at, first_review_at),
        last_commit_before_first_review_at=last_commit_at,
        last_commit_to_first_review_seconds=seconds_between(last_commit_at, first_review_at),
    )


def _first_after(events: Sequence[TimelineEvent], moment: datetime) -> Optional[TimelineEvent]:
    return next((event for event in events if event.at > moment), None)


def compute_rereview_cycles(events: Sequence[TimelineEvent],
                            pr_author: Optional[str] = None) -> Tuple[ReReviewCycle, ...]:
    """
    Extract re-review cycles that follow CHANGES_REQUESTED reviews.

    A cycle starts at the first commit after the CR review, or at the first
    review request after it when no such commit exists, and ends at the next
    review submitted by anyone after that start. CR reviews with no start or
    no end produce no cycle, but still consume their index, so indices can
    have gaps.

    Commit authorship is not available on timeline commit nodes, so
    ``pr_author`` does not currently filter anything.

    Args:
        events: Normalized, time-ordered timeline events for the PR
        pr_author: Login of the PR author

    Returns:
        Tuple of cycles in the order of their triggering CR reviews
    """
    reviews = events_of_kind(events, EventKind.REVIEW)
    change_requests = [review for review in reviews if review.state == CHANGES_REQUESTED]
    if not change_requests:
        return ()

    commits = events_of_kind(events, EventKind.COMMIT)
    requests = events_of_kind(events, EventKind.REVIEW_REQUESTED)

    cycles: List[ReReviewCycle] = []

    for idx, change_request in enumerate(change_requests):
        start_event = _first_after(commits, change_request.at)
        trigger = CycleTrigger.AUTHOR_COMMIT_AFTER_CR

        if start_event is None:
            start_event = _first_after(requests, change_request.at)
            trigger = CycleTrigger.REVIEW_REQUESTED_AFTER_CR

        if start_event is None:
            continue

        end_review = _first_after(reviews, start_event.at)
        if end_review is None:
            continue

        cycles.append(ReReviewCycle(
            index=idx + 1,
            start_at=start_event.at,
            end_at=end_review.at,
            seconds=seconds_between(start_event.at, end_review.at),
            trigger=trigger,
            end_review_state=end_review.state,
            end_reviewer=end_review.reviewer,
        ))

    return tuple(cycles)
