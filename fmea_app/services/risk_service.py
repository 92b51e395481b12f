"""
Risk Aggregation Service

Single home for every risk number the application shows:
- Representative (pre-mitigation) RPN of a failure mode
- Post-mitigation RPN of an effect
- Classification of an RPN into a configurable band
- Validation of a band configuration
- Dashboard metrics, chart data and summary figures for a project

RPN = Severity × Occurrence × Detection

All functions are pure: they read the records they are given and never
touch the store, so they are safe to call from any thread.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union
import math

# Detection rating assumed when a failure mode has no controls
WORST_DETECTION = 10

# Band list used for on-screen indicators (SAE J1739 defaults)
DEFAULT_THRESHOLDS: List[Dict[str, Any]] = [
    {'id': 1, 'label': 'Low', 'min': 1, 'max': 69, 'color': 'green'},
    {'id': 2, 'label': 'Medium', 'min': 70, 'max': 99, 'color': 'yellow'},
    {'id': 3, 'label': 'High', 'min': 100, 'max': 150, 'color': 'orange'},
    {'id': 4, 'label': 'Critical', 'min': 151, 'max': 1000, 'color': 'red'},
]

# Dashboard counters use their own cutoffs, independent of DEFAULT_THRESHOLDS
DEFAULT_DASHBOARD_CUTOFFS: Dict[str, int] = {'high': 200, 'critical': 300}

# Fixed histogram buckets of the dashboard risk distribution chart
DISTRIBUTION_BUCKETS = [
    ('Low (1-49)', 1, 49),
    ('Medium (50-99)', 50, 99),
    ('High (100-199)', 100, 199),
    ('Critical (200+)', 200, None),
]

ACTION_STATUSES = [
    ('open', 'Open'),
    ('in-progress', 'In Progress'),
    ('completed', 'Completed'),
    ('cancelled', 'Cancelled'),
]

NAMED_COLORS = {
    'green': '#22c55e',
    'yellow': '#eab308',
    'orange': '#f97316',
    'red': '#ef4444',
    'blue': '#3b82f6',
    'purple': '#a855f7',
    'pink': '#ec4899',
    'teal': '#14b8a6',
    'indigo': '#6366f1',
    'gray': '#9ca3af',
}

TOP_RISK_LABEL_LENGTH = 30


@dataclass(frozen=True)
class RiskScore:
    """Representative risk of a failure mode"""
    rpn: int
    severity: int
    occurrence: int
    detection: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class Band:
    """A named RPN range"""
    label: str
    min: int
    max: int
    color: str
    id: Optional[int] = None

    @property
    def hex_color(self) -> str:
        if self.color.startswith('#'):
            return self.color
        return NAMED_COLORS.get(self.color, NAMED_COLORS['gray'])

    def contains(self, rpn: int) -> bool:
        return self.min <= rpn <= self.max

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['hexColor'] = self.hex_color
        return data


BandLike = Union[Band, Mapping[str, Any]]


def _as_band(threshold: BandLike) -> Band:
    if isinstance(threshold, Band):
        return threshold
    return Band(
        label=threshold['label'],
        min=threshold['min'],
        max=threshold['max'],
        color=threshold.get('color', 'gray'),
        id=threshold.get('id'),
    )


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves going up (0.5 -> 1, 2.5 -> 3)."""
    return int(math.floor(value + 0.5))


# ---------------------------------------------------------------------------
# Core scoring
# ---------------------------------------------------------------------------

def detection_rating(controls: Sequence[Mapping[str, Any]]) -> int:
    """Best (lowest) detection among the controls, or the worst case without controls."""
    if not controls:
        return WORST_DETECTION
    return min(control['detection'] for control in controls)


def compute_representative_risk(
    causes: Sequence[Mapping[str, Any]],
    effects: Sequence[Mapping[str, Any]],
    controls: Sequence[Mapping[str, Any]],
) -> RiskScore:
    """
    Compute the representative (pre-mitigation) risk of a failure mode.

    Every cause is paired with every effect. The pair with the strictly
    greatest severity × occurrence × detection wins; on a tie the pair seen
    first is kept. Without causes or without effects the score is zero.
    """
    if not causes or not effects:
        return RiskScore(rpn=0, severity=0, occurrence=0, detection=WORST_DETECTION)

    detection = detection_rating(controls)

    max_rpn = 0
    max_severity = 0
    max_occurrence = 0
    max_detection = WORST_DETECTION

    for cause in causes:
        for effect in effects:
            candidate = effect['severity'] * cause['occurrence'] * detection
            if candidate > max_rpn:
                max_rpn = candidate
                max_severity = effect['severity']
                max_occurrence = cause['occurrence']
                max_detection = detection

    return RiskScore(
        rpn=max_rpn,
        severity=max_severity,
        occurrence=max_occurrence,
        detection=max_detection,
    )


def compute_post_mitigation_risk(effect: Mapping[str, Any]) -> int:
    """Product of the post-mitigation ratings, or 0 while any of them is missing."""
    severity = effect.get('severityPost')
    occurrence = effect.get('occurrencePost')
    detection = effect.get('detectionPost')
    if severity is None or occurrence is None or detection is None:
        return 0
    return severity * occurrence * detection


def classify_band(rpn: int, thresholds: Sequence[BandLike]) -> Band:
    """
    Return the first band whose [min, max] contains rpn, falling back to the
    last band. Overlaps and gaps are not checked here, see validate_thresholds.
    """
    if not thresholds:
        raise ValueError("At least one threshold band is required")
    bands = [_as_band(t) for t in thresholds]
    for band in bands:
        if band.contains(rpn):
            return band
    return bands[-1]


# ---------------------------------------------------------------------------
# Threshold configuration checks
# ---------------------------------------------------------------------------

def max_achievable_rpn(scale_max: int) -> int:
    """Largest RPN a failure mode can reach on a 1..scale_max rating scale."""
    return scale_max ** 3


def validate_thresholds(thresholds: Sequence[BandLike], max_rpn: int) -> List[str]:
    """
    Check a band configuration and describe every problem found.

    Bands must start at 1, must not overlap or leave gaps, and the highest
    band must reach max_rpn. An empty list means the configuration is valid.
    """
    messages: List[str] = []
    if not thresholds:
        return ["At least one threshold band is required"]

    bands = [_as_band(t) for t in thresholds]

    for band in bands:
        if band.min > band.max:
            messages.append(
                f"Band '{band.label}' has a minimum ({band.min}) greater than its maximum ({band.max})"
            )

    ordered = sorted(bands, key=lambda b: (b.min, b.max))

    if ordered[0].min != 1:
        messages.append(f"The lowest band '{ordered[0].label}' must start at 1, not {ordered[0].min}")

    for previous, current in zip(ordered, ordered[1:]):
        if current.min <= previous.max:
            messages.append(
                f"Bands '{previous.label}' ({previous.min}-{previous.max}) and "
                f"'{current.label}' ({current.min}-{current.max}) overlap"
            )
        elif current.min > previous.max + 1:
            messages.append(
                f"Gap between '{previous.label}' and '{current.label}': "
                f"RPN {previous.max + 1}-{current.min - 1} is not covered"
            )

    highest = max(band.max for band in bands)
    if highest < max_rpn:
        messages.append(
            f"Bands end at {highest} but the maximum achievable RPN is {max_rpn}"
        )

    return messages


# ---------------------------------------------------------------------------
# Aggregate reporting
# ---------------------------------------------------------------------------

def score_failure_mode(failure_mode: Mapping[str, Any]) -> RiskScore:
    return compute_representative_risk(
        failure_mode.get('causes') or [],
        failure_mode.get('effects') or [],
        failure_mode.get('controls') or [],
    )


def _percentage(count: int, total: int) -> int:
    return round_half_up(count / total * 100) if total > 0 else 0


def _truncate(text: str, length: int = TOP_RISK_LABEL_LENGTH) -> str:
    if len(text) > length:
        return text[:length] + '...'
    return text


def rank_failure_modes(failure_modes: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Attach the representative risk to each failure mode, highest RPN first."""
    scored = [
        {'failureMode': fm, 'risk': score_failure_mode(fm)}
        for fm in failure_modes
    ]
    # sorted() is stable, equal RPNs keep their input order
    return sorted(scored, key=lambda item: item['risk'].rpn, reverse=True)


def top_risks(failure_modes: Iterable[Mapping[str, Any]], limit: int) -> List[Dict[str, Any]]:
    return rank_failure_modes(failure_modes)[:max(0, limit)]


def build_dashboard_metrics(
    failure_modes: Sequence[Mapping[str, Any]],
    actions: Sequence[Mapping[str, Any]],
    cutoffs: Optional[Mapping[str, int]] = None,
) -> Dict[str, int]:
    cutoffs = {**DEFAULT_DASHBOARD_CUTOFFS, **(cutoffs or {})}
    rpns = [score_failure_mode(fm).rpn for fm in failure_modes]

    return {
        'totalFailureModes': len(failure_modes),
        'highRiskModes': sum(1 for rpn in rpns if rpn >= cutoffs['high']),
        'criticalModes': sum(1 for rpn in rpns if rpn >= cutoffs['critical']),
        'averageRPN': round_half_up(sum(rpns) / len(rpns)) if rpns else 0,
        'openActions': sum(1 for a in actions if a.get('status') == 'open'),
        'completedActions': sum(1 for a in actions if a.get('status') == 'completed'),
    }


def build_risk_distribution(rpns: Sequence[int]) -> List[Dict[str, Any]]:
    total = len(rpns)
    distribution = []
    for label, low, high in DISTRIBUTION_BUCKETS:
        count = sum(1 for rpn in rpns if rpn >= low and (high is None or rpn <= high))
        distribution.append({
            'range': label,
            'count': count,
            'percentage': _percentage(count, total),
        })
    return distribution


def build_action_status(actions: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    total = len(actions)
    result = []
    for status, label in ACTION_STATUSES:
        count = sum(1 for a in actions if a.get('status') == status)
        result.append({'status': label, 'count': count, 'percentage': _percentage(count, total)})
    return result


def build_chart_data(
    failure_modes: Sequence[Mapping[str, Any]],
    actions: Sequence[Mapping[str, Any]],
    top_n: int = 10,
) -> Dict[str, Any]:
    ranked = rank_failure_modes(failure_modes)
    scores = [score_failure_mode(fm) for fm in failure_modes]

    return {
        'rpnHeatmap': [
            {
                'severity': s.severity,
                'occurrence': s.occurrence,
                'detection': s.detection,
                'count': 1,
                'rpn': s.rpn,
            } for s in scores
        ],
        'topRisks': [
            {
                'failureMode': _truncate(item['failureMode'].get('description') or ''),
                **item['risk'].to_dict(),
            } for item in ranked[:max(0, top_n)]
        ],
        'riskDistribution': build_risk_distribution([s.rpn for s in scores]),
        'actionStatus': build_action_status(actions),
    }


def build_project_report(
    failure_modes: Sequence[Mapping[str, Any]],
    actions: Sequence[Mapping[str, Any]],
    cutoffs: Optional[Mapping[str, int]] = None,
    top_n: int = 10,
) -> Dict[str, Any]:
    """Dashboard payload: metrics plus chart data for one project."""
    return {
        'metrics': build_dashboard_metrics(failure_modes, actions, cutoffs),
        'chartData': build_chart_data(failure_modes, actions, top_n),
    }


def build_summary(
    components: Sequence[Mapping[str, Any]],
    failure_modes: Sequence[Mapping[str, Any]],
    thresholds: Sequence[BandLike],
    top_n: int = 5,
) -> Dict[str, Any]:
    """Executive summary figures, banded with the project's own thresholds."""
    ranked = rank_failure_modes(failure_modes)
    rpns = [item['risk'].rpn for item in ranked]
    component_names = {c['id']: c.get('name') for c in components}

    band_counts: Dict[str, int] = {_as_band(t).label: 0 for t in thresholds}
    for rpn in rpns:
        if rpn > 0:
            band_counts[classify_band(rpn, thresholds).label] += 1

    actions = [a for fm in failure_modes for a in (fm.get('actions') or [])]
    completed = sum(1 for a in actions if a.get('status') == 'completed')

    return {
        'totalComponents': len(components),
        'totalFailureModes': len(failure_modes),
        'averageRPN': round_half_up(sum(rpns) / len(rpns)) if rpns else 0,
        'highestRPN': max(rpns, default=0),
        'bandCounts': band_counts,
        'totalActions': len(actions),
        'openActions': len(actions) - completed,
        'completedActions': completed,
        'completionRate': _percentage(completed, len(actions)),
        'topRisks': [
            {
                'failureModeId': item['failureMode'].get('id'),
                'failureMode': item['failureMode'].get('description'),
                'component': component_names.get(item['failureMode'].get('componentId')),
                'band': classify_band(item['risk'].rpn, thresholds).label if item['risk'].rpn > 0 else None,
                **item['risk'].to_dict(),
            } for item in ranked[:max(0, top_n)]
        ],
    }
