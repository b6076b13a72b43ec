"""
Priority Scoring

Deterministic, bounded priority score used to order issues for review:

    total = severity_weight * environment_weight
          + min(occurrences_24h, 100)
          + min(unique_users_24h_est, 100)
          + trend

Every component is exposed so the console can explain a score.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

from .models import Issue, Severity

SEVERITY_WEIGHTS: Dict[Severity, int] = {
    Severity.P0: 100,
    Severity.P1: 60,
    Severity.P2: 30,
    Severity.P3: 10,
}

ENVIRONMENT_WEIGHTS: Dict[str, float] = {
    "prod": 1.0,
    "stage": 0.6,
    "dev": 0.3,
}

# Component caps
MAX_OCCURRENCES = 100
MAX_USERS = 100
MAX_TREND = 50

# Lower bound (inclusive) of each tier, highest first
TIERS = (
    (150, "critical"),
    (100, "high"),
    (50, "medium"),
)


@dataclass(frozen=True)
class PriorityScore:
    """Score breakdown for one issue."""
    severity_weight: int
    environment_weight: float
    base: float                 # severity_weight * environment_weight
    occurrences: int
    users: int
    trend: float
    total: float
    tier: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def environment_weight(environment: str) -> float:
    """Weight for an environment; unknown names get the dev weight."""
    return ENVIRONMENT_WEIGHTS.get(environment, ENVIRONMENT_WEIGHTS["dev"])


def trend_component(current: int, previous: Optional[int]) -> float:
    """Percentage growth over the previous window, clamped to [0, 50]."""
    if previous is None or previous <= 0:
        return 0.0
    percent = (current - previous) / previous * 100
    return float(min(max(percent, 0.0), MAX_TREND))


def priority_tier(total: float) -> str:
    for floor, name in TIERS:
        if total >= floor:
            return name
    return "low"


def score(issue: Issue, previous_occurrences_24h: Optional[int] = None) -> PriorityScore:
    """
    Compute the priority score of an issue.

    Args:
        issue: Issue to score
        previous_occurrences_24h: Occurrence count of the previous 24h window,
            supplied by the caller. No trend is applied when absent or zero.
    """
    severity_weight = SEVERITY_WEIGHTS[issue.severity]
    env_weight = environment_weight(issue.environment)
    base = severity_weight * env_weight
    occurrences = min(issue.counts.occurrences_24h, MAX_OCCURRENCES)
    users = min(issue.counts.unique_users_24h_est, MAX_USERS)
    trend = trend_component(issue.counts.occurrences_24h, previous_occurrences_24h)
    total = base + occurrences + users + trend

    return PriorityScore(
        severity_weight=severity_weight,
        environment_weight=env_weight,
        base=base,
        occurrences=occurrences,
        users=users,
        trend=trend,
        total=total,
        tier=priority_tier(total),
    )


def rank_by_priority(
    issues: List[Issue],
    baselines: Optional[Mapping[str, int]] = None,
) -> List[Issue]:
    """
    Sort issues by total score, highest first.

    Ties keep no particular order; callers needing one must sort by their own
    secondary key first (the sort is stable).

    Args:
        issues: Issues to rank
        baselines: Optional issue_id -> previous 24h count, for the trend term
    """
    baselines = baselines or {}
    return sorted(
        issues,
        key=lambda issue: score(issue, baselines.get(issue.id)).total,
        reverse=True,
    )


def trend_direction(current_24h: int, previous_24h: int) -> str:
    """Classify growth as increasing / stable / decreasing (±10% band)."""
    if previous_24h == 0:
        return "increasing" if current_24h > 0 else "stable"

    change = (current_24h - previous_24h) / previous_24h * 100
    if change > 10:
        return "increasing"
    if change < -10:
        return "decreasing"
    return "stable"


def meets_triage_threshold(
    issue: Issue,
    min_severity: Union[Severity, str] = Severity.P1,
    min_recurrence: int = 5,
) -> bool:
    """Check whether an issue is severe and frequent enough for automated triage."""
    order = list(Severity)
    min_severity = Severity(min_severity) if isinstance(min_severity, str) else min_severity
    if order.index(issue.severity) > order.index(min_severity):
        return False
    return issue.counts.occurrences_24h >= min_recurrence
