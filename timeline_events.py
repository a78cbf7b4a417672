"""
Timeline event normalization for pull request review latency analysis.

This module converts the raw, heterogeneous timeline nodes returned by the
GitHub GraphQL API into a single typed event sequence ordered by time.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Tuple

from dateutil import parser as date_parser


logger = logging.getLogger(__name__)


class EventKind(Enum):
    """Discriminator for the supported timeline event kinds."""
    REVIEW = 'review'
    REVIEW_REQUESTED = 'review_requested'
    REVIEW_REQUEST_REMOVED = 'review_request_removed'
    COMMIT = 'commit'
    READY_FOR_REVIEW = 'ready_for_review'
    CONVERT_TO_DRAFT = 'convert_to_draft'
    REVIEW_DISMISSED = 'review_dismissed'


# Review states reported by GitHub for submitted reviews
APPROVED = 'APPROVED'
CHANGES_REQUESTED = 'CHANGES_REQUESTED'
COMMENTED = 'COMMENTED'


@dataclass(frozen=True)
class TimelineEvent:
    """Base class for all normalized timeline events."""
    at: datetime

    kind: ClassVar[EventKind]


@dataclass(frozen=True)
class Review(TimelineEvent):
    state: str
    reviewer: Optional[str] = None

    kind: ClassVar[EventKind] = EventKind.REVIEW


@dataclass(frozen=True)
class ReviewRequested(TimelineEvent):
    requested: Optional[str] = None

    kind: ClassVar[EventKind] = EventKind.REVIEW_REQUESTED


@dataclass(frozen=True)
class ReviewRequestRemoved(TimelineEvent):
    requested: Optional[str] = None

    kind: ClassVar[EventKind] = EventKind.REVIEW_REQUEST_REMOVED


@dataclass(frozen=True)
class Commit(TimelineEvent):
    id: str = ''

    kind: ClassVar[EventKind] = EventKind.COMMIT


@dataclass(frozen=True)
class ReadyForReview(TimelineEvent):
    kind: ClassVar[EventKind] = EventKind.READY_FOR_REVIEW


@dataclass(frozen=True)
class ConvertToDraft(TimelineEvent):
    kind: ClassVar[EventKind] = EventKind.CONVERT_TO_DRAFT


@dataclass(frozen=True)
class ReviewDismissed(TimelineEvent):
    kind: ClassVar[EventKind] = EventKind.REVIEW_DISMISSED


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a GitHub ISO 8601 timestamp into a timezone-aware UTC datetime.

    Args:
        value: Timestamp string such as '2024-12-01T10:00:00Z'

    Returns:
        UTC datetime, or None if the value is missing or malformed
    """
    if not value or not isinstance(value, str):
        return None

    try:
        parsed = date_parser.isoparse(value)
    except (ValueError, OverflowError):
        return None

    # GitHub always sends offsets; treat anything naive as UTC
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


def format_requested_reviewer(requested: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Build a single identifier for a requested reviewer.

    Teams are prefixed with ``team:`` so they stay distinguishable from users
    all the way into the exported rows.

    Args:
        requested: The ``requestedReviewer`` node (User, Team, Bot, ...) or None

    Returns:
        ``team:<slug>`` for teams, the login for anything else, or None
    """
    if not requested or not isinstance(requested, dict):
        return None

    if requested.get('__typename') == 'Team':
        return f"team:{requested.get('slug') or ''}"

    return requested.get('login')


def _login(actor: Optional[Dict[str, Any]]) -> Optional[str]:
    if not actor or not isinstance(actor, dict):
        return None
    return actor.get('login')


def _parse_node(node: Dict[str, Any]) -> Optional[TimelineEvent]:
    """Convert one raw timeline node into an event, or None if it is unusable."""
    typename = node.get('__typename')

    if typename == 'PullRequestReview':
        at = parse_timestamp(node.get('submittedAt'))
        if at is None:
            return None
        return Review(at=at, state=node.get('state') or '', reviewer=_login(node.get('author')))

    if typename == 'PullRequestCommit':
        commit = node.get('commit') or {}
        at = parse_timestamp(commit.get('committedDate'))
        if at is None:
            return None
        return Commit(at=at, id=commit.get('oid') or '')

    if typename in ('ReviewRequestedEvent', 'ReviewRequestRemovedEvent'):
        at = parse_timestamp(node.get('createdAt'))
        if at is None:
            return None
        requested = format_requested_reviewer(node.get('requestedReviewer'))
        if typename == 'ReviewRequestedEvent':
            return ReviewRequested(at=at, requested=requested)
        return ReviewRequestRemoved(at=at, requested=requested)

    simple_events = {
        'ReadyForReviewEvent': ReadyForReview,
        'ConvertToDraftEvent': ConvertToDraft,
        'ReviewDismissedEvent': ReviewDismissed,
    }
    event_class = simple_events.get(typename)
    if event_class is None:
        return None

    at = parse_timestamp(node.get('createdAt'))
    if at is None:
        return None
    return event_class(at=at)


def parse_timeline_events(items: Iterable[Dict[str, Any]]) -> Tuple[TimelineEvent, ...]:
    """
    Normalize raw timeline nodes into a time-ordered event sequence.

    Unknown node types are ignored, and nodes missing a required timestamp
    are dropped. Events sharing a timestamp keep the order in which they
    appeared in ``items``.

    Args:
        items: Raw timeline nodes as returned by the GraphQL API

    Returns:
        Tuple of events sorted ascending by timestamp
    """
    events: List[TimelineEvent] = []
    dropped = 0

    for node in items or []:
        if not isinstance(node, dict):
            dropped += 1
            continue

        event = _parse_node(node)
        if event is None:
            dropped += 1
            logger.debug(f"Dropped timeline item of type {node.get('__typename')!r}")
            continue

        events.append(event)

    if dropped:
        logger.debug(f"Dropped {dropped} unusable timeline items")

    # sorted() is stable, so simultaneous events keep discovery order
    return tuple(sorted(events, key=lambda event: event.at))


def events_of_kind(events: Iterable[TimelineEvent], kind: EventKind) -> List[TimelineEvent]:
    """Return the events of a single kind, preserving sequence order."""
    return [event for event in events if event.kind is kind]
