"""Project risk-scale settings: defaults, merging and derived limits."""
import copy
import logging
from typing import Any, Dict, List, Tuple

from fmea_app.services.risk_service import (
    DEFAULT_DASHBOARD_CUTOFFS,
    DEFAULT_THRESHOLDS,
    max_achievable_rpn,
    validate_thresholds,
)

logger = logging.getLogger(__name__)

SCALE_RANGES = {
    '1-10': (1, 10),
    '1-5': (1, 5),
}

DEFAULT_SETTINGS: Dict[str, Any] = {
    'riskMatrix': {
        'matrixSize': 12,
        'scaleType': '1-10',
        'detBaseline': 5,
        'preset': 'SAE J1739',
    },
    'thresholds': DEFAULT_THRESHOLDS,
    'dashboardCutoffs': DEFAULT_DASHBOARD_CUTOFFS,
    'standards': ['SAE J1739'],
    'descriptions': {
        'severity': {
            '1': 'No effect', '2': 'Very minor', '3': 'Minor', '4': 'Very low', '5': 'Low',
            '6': 'Moderate', '7': 'High', '8': 'Very high', '9': 'Hazardous', '10': 'Catastrophic',
        },
        'occurrence': {
            '1': 'Very rare', '2': 'Rare', '3': 'Unlikely', '4': 'Low', '5': 'Moderate',
            '6': 'Moderately high', '7': 'High', '8': 'Very high', '9': 'Extremely high', '10': 'Certain',
        },
        'detection': {
            '1': 'Certain detection', '2': 'Very high', '3': 'High', '4': 'Moderately high', '5': 'Moderate',
            '6': 'Low', '7': 'Very low', '8': 'Remote', '9': 'Very remote', '10': 'Cannot detect',
        },
    },
}


def get_default_settings() -> Dict[str, Any]:
    return copy.deepcopy(DEFAULT_SETTINGS)


def resolve_settings(project: Dict[str, Any]) -> Dict[str, Any]:
    """Project settings with defaults filled in for anything never saved."""
    return merge_settings(get_default_settings(), project.get('settings') or {})


def merge_settings(current: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep-merge a partial settings update.

    riskMatrix, dashboardCutoffs and each descriptions scale are merged key by
    key; thresholds and standards are replaced as a whole.
    """
    result = copy.deepcopy(current)

    for key in ('riskMatrix', 'dashboardCutoffs'):
        if update.get(key):
            result[key] = {**result.get(key, {}), **update[key]}

    for key in ('thresholds', 'standards'):
        if key in update and update[key] is not None:
            result[key] = copy.deepcopy(update[key])

    if update.get('descriptions'):
        descriptions = result.setdefault('descriptions', {})
        for scale, texts in update['descriptions'].items():
            descriptions[scale] = {**descriptions.get(scale, {}), **{str(k): v for k, v in texts.items()}}

    return result


def rating_range(settings: Dict[str, Any]) -> Tuple[int, int]:
    scale_type = settings.get('riskMatrix', {}).get('scaleType', '1-10')
    return SCALE_RANGES.get(scale_type, SCALE_RANGES['1-10'])


def threshold_warnings(settings: Dict[str, Any]) -> List[str]:
    """Validation messages for the band list of the given settings."""
    _, scale_max = rating_range(settings)
    return validate_thresholds(settings.get('thresholds') or [], max_achievable_rpn(scale_max))
