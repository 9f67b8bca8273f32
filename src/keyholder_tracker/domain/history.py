"""
History search and the keyholder's redacted view of a submissive's history.

Entries are built from finished sessions or from audit events so the same
filters work on both. Every function here is pure.
"""

from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence

from pydantic import AwareDatetime, BaseModel, Field

from ..core.enums import Role, SessionEventType
from .models import Event, Session, SessionEvent


class GoalRecord(BaseModel):
    id: str
    type: str
    completed: bool = False
    progress: float = 0.0


class SessionRating(BaseModel):
    overall: float
    comfort: Optional[float] = None
    difficulty: Optional[float] = None


class HistoryEntry(BaseModel):
    """Searchable view of one session or logged event."""

    id: str
    source: str  # "session" or "event"
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: int = 0
    effective_duration: int = 0
    goals: List[GoalRecord] = Field(default_factory=list)
    pause_events: List[SessionEvent] = Field(default_factory=list)
    was_keyholder_controlled: bool = False
    keyholder_interactions: List[SessionEvent] = Field(default_factory=list)
    notes: str = ""
    tags: List[str] = Field(default_factory=list)
    rating: Optional[SessionRating] = None


class DateRange(BaseModel):
    start: AwareDatetime
    end: AwareDatetime


class RatingRange(BaseModel):
    min: float
    max: float


class HistorySearchQuery(BaseModel):
    """Optional predicates; the ones that are set are combined with AND."""

    date_range: Optional[DateRange] = None
    min_duration: Optional[int] = None
    max_duration: Optional[int] = None
    goal_types: Optional[List[str]] = None
    has_keyholder_control: Optional[bool] = None
    completed_goals: Optional[bool] = None
    tags: Optional[List[str]] = None
    rating: Optional[RatingRange] = None
    text_search: Optional[str] = None


class SharingSettings(BaseModel):
    """What the submissive has opted to share with the keyholder."""

    share_duration: bool = True
    share_goals: bool = True
    share_pauses: bool = True
    share_notes: bool = False
    share_ratings: bool = False


class KeyholderAccess(BaseModel):
    has_access: bool = True
    access_level: str = "full"


class RedactedEntry(BaseModel):
    id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = None
    effective_duration: Optional[int] = None
    goals: List[GoalRecord] = Field(default_factory=list)
    pause_events: List[SessionEvent] = Field(default_factory=list)
    notes: str = ""
    rating: Optional[SessionRating] = None
    keyholder_interactions: List[SessionEvent] = Field(default_factory=list)


class SummaryStats(BaseModel):
    total_sessions: int = 0
    average_duration: float = 0.0
    goal_completion_rate: float = 0.0
    last_session_date: Optional[datetime] = None


class KeyholderHistoryView(BaseModel):
    allowed_sessions: List[RedactedEntry] = Field(default_factory=list)
    summary_stats: SummaryStats = Field(default_factory=SummaryStats)
    access_level: str = "summary"
    restrictions: List[str] = Field(default_factory=list)


# ==================== BUILDING ENTRIES ====================


def entry_from_session(session: Session) -> HistoryEntry:
    pauses = [
        event
        for event in session.events
        if event.type in (SessionEventType.PAUSE, SessionEventType.RESUME)
    ]
    interactions = [event for event in session.events if event.initiated_by == Role.KEYHOLDER]

    goals: List[GoalRecord] = []
    if session.goal_duration:
        progress = min(1.0, session.effective_duration / session.goal_duration)
        goals.append(
            GoalRecord(
                id=f"{session.id}:duration",
                type="hardcore" if session.is_hardcore_mode else "duration",
                completed=session.goal_met,
                progress=progress,
            )
        )

    return HistoryEntry(
        id=session.id,
        source="session",
        start_time=session.start_time,
        end_time=session.end_time,
        duration=session.duration,
        effective_duration=session.effective_duration,
        goals=goals,
        pause_events=pauses,
        was_keyholder_controlled=bool(interactions),
        keyholder_interactions=interactions,
        notes=session.notes or "",
    )


def _as_int(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def entry_from_event(event: Event) -> HistoryEntry:
    details = event.details
    duration = _as_int(details.get("duration"))

    rating = None
    raw_rating = details.get("rating")
    if isinstance(raw_rating, (int, float)):
        rating = SessionRating(overall=float(raw_rating))
    elif isinstance(raw_rating, dict) and "overall" in raw_rating:
        rating = SessionRating.model_validate(raw_rating)

    goals = [
        GoalRecord.model_validate(goal)
        for goal in details.get("goals", [])
        if isinstance(goal, dict) and "id" in goal and "type" in goal
    ]

    return HistoryEntry(
        id=event.id,
        source="event",
        start_time=event.timestamp,
        duration=duration,
        effective_duration=duration,
        goals=goals,
        was_keyholder_controlled=event.logged_by == Role.KEYHOLDER,
        notes=str(details.get("notes") or ""),
        tags=list(event.tags),
        rating=rating,
    )


# ==================== SEARCH ====================

Predicate = Callable[[HistoryEntry], bool]


def _predicates(query: HistorySearchQuery) -> List[Predicate]:
    predicates: List[Predicate] = []

    if query.date_range is not None:
        date_range = query.date_range
        predicates.append(lambda e: date_range.start <= e.start_time <= date_range.end)
    if query.min_duration is not None:
        predicates.append(lambda e: e.effective_duration >= query.min_duration)
    if query.max_duration is not None:
        predicates.append(lambda e: e.effective_duration <= query.max_duration)
    if query.goal_types:
        wanted = set(query.goal_types)
        predicates.append(lambda e: any(goal.type in wanted for goal in e.goals))
    if query.has_keyholder_control is not None:
        predicates.append(lambda e: e.was_keyholder_controlled == query.has_keyholder_control)
    if query.completed_goals is not None:
        if query.completed_goals:
            predicates.append(lambda e: any(goal.completed for goal in e.goals))
        else:
            predicates.append(lambda e: any(not goal.completed for goal in e.goals))
    if query.tags:
        tags = set(query.tags)
        predicates.append(lambda e: any(tag in tags for tag in e.tags))
    if query.rating is not None:
        rating = query.rating
        predicates.append(
            lambda e: e.rating is not None and rating.min <= e.rating.overall <= rating.max
        )
    if query.text_search:
        needle = query.text_search.lower()
        predicates.append(
            lambda e: needle in e.notes.lower() or any(needle in tag.lower() for tag in e.tags)
        )

    return predicates


def search(entries: Sequence[HistoryEntry], query: HistorySearchQuery) -> List[HistoryEntry]:
    """Filter entries by every predicate set on the query, preserving order."""
    predicates = _predicates(query)
    return [entry for entry in entries if all(predicate(entry) for predicate in predicates)]


# ==================== KEYHOLDER VIEW ====================


def _summary(entries: Sequence[HistoryEntry]) -> SummaryStats:
    if not entries:
        return SummaryStats()
    goals = [goal for entry in entries for goal in entry.goals]
    completion = (
        sum(1 for goal in goals if goal.completed) / len(goals) * 100 if goals else 0.0
    )
    return SummaryStats(
        total_sessions=len(entries),
        average_duration=sum(e.effective_duration for e in entries) / len(entries),
        goal_completion_rate=completion,
        last_session_date=max(e.start_time for e in entries),
    )


def redact_entry(entry: HistoryEntry, sharing: SharingSettings) -> RedactedEntry:
    return RedactedEntry(
        id=entry.id,
        start_time=entry.start_time,
        end_time=entry.end_time,
        duration=entry.duration if sharing.share_duration else None,
        effective_duration=entry.effective_duration if sharing.share_duration else None,
        goals=entry.goals if sharing.share_goals else [],
        pause_events=entry.pause_events if sharing.share_pauses else [],
        notes=entry.notes if sharing.share_notes else "",
        rating=entry.rating if sharing.share_ratings else None,
        keyholder_interactions=entry.keyholder_interactions,
    )


def keyholder_view(
    entries: Sequence[HistoryEntry],
    sharing: SharingSettings,
    access: Optional[KeyholderAccess] = None,
) -> KeyholderHistoryView:
    """Project a history for the keyholder, honouring the owner's sharing choices."""
    access = access or KeyholderAccess()
    if not access.has_access:
        return KeyholderHistoryView(
            access_level="summary",
            restrictions=["No access granted by submissive"],
        )

    return KeyholderHistoryView(
        allowed_sessions=[redact_entry(entry, sharing) for entry in entries],
        summary_stats=_summary(entries),
        access_level=access.access_level,
    )

