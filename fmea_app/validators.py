"""Input validation utilities for the FMEA API."""
import re
from datetime import date
from typing import Optional, Tuple, Any, Dict

# Validation constants
MAX_NAME_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 2000
MAX_TEXT_LENGTH = 10000
ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]{1,64}$')

ALLOWED_PROJECT_STATUSES = {'in-progress', 'completed', 'approved'}
ALLOWED_FAILURE_MODE_STATUSES = {'active', 'closed', 'on-hold'}
ALLOWED_ACTION_STATUSES = {'open', 'in-progress', 'completed', 'cancelled'}
ALLOWED_CONTROL_TYPES = {'prevention', 'detection'}
ALLOWED_CRITICALITIES = {'low', 'medium', 'high', 'critical'}
ALLOWED_SCALE_TYPES = {'1-10', '1-5'}
ALLOWED_SUGGESTION_TYPES = {
    'failure-modes', 'causes', 'effects', 'controls',
    'severity', 'occurrence', 'detection',
}
ALLOWED_DUPLICATE_TYPES = ('component', 'failureMode', 'effect', 'componentFunction')

DEFAULT_RATING_RANGE = (1, 10)


def validate_id(value: Any, field_name: str = 'ID') -> Tuple[bool, Optional[str]]:
    """Validate an entity identifier."""
    if not value:
        return False, f"{field_name} is required"
    if not isinstance(value, str):
        return False, f"{field_name} must be a string"
    if not ID_PATTERN.match(value):
        return False, f"Invalid {field_name} format"
    return True, None


def validate_string_field(value: Any, field_name: str, max_length: int, required: bool = False) -> Tuple[bool, Optional[str]]:
    """Validate a string field."""
    if value is None or value == '':
        if required:
            return False, f"{field_name} is required"
        return True, None
    if not isinstance(value, str):
        return False, f"{field_name} must be a string"
    if len(value) > max_length:
        return False, f"{field_name} exceeds maximum length of {max_length} characters"
    return True, None


def validate_rating(value: Any, field_name: str, rating_range: Tuple[int, int] = DEFAULT_RATING_RANGE,
                    required: bool = True) -> Tuple[bool, Optional[str]]:
    """Validate a severity/occurrence/detection style rating."""
    if value is None:
        if required:
            return False, f"{field_name} is required"
        return True, None
    # bool is an int subclass, reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        return False, f"{field_name} must be an integer"
    low, high = rating_range
    if value < low or value > high:
        return False, f"{field_name} must be between {low} and {high}"
    return True, None


def validate_choice(value: Any, field_name: str, allowed: set, required: bool = False) -> Tuple[bool, Optional[str]]:
    if value is None:
        if required:
            return False, f"{field_name} is required"
        return True, None
    if value not in allowed:
        return False, f"{field_name} must be one of: {', '.join(sorted(allowed))}"
    return True, None


def validate_date(value: Any, field_name: str) -> Tuple[bool, Optional[str]]:
    """Validate an optional ISO date (YYYY-MM-DD)."""
    if value is None or value == '':
        return True, None
    if not isinstance(value, str):
        return False, f"{field_name} must be a string"
    try:
        date.fromisoformat(value[:10])
    except ValueError:
        return False, f"{field_name} must be an ISO date (YYYY-MM-DD)"
    return True, None


def _require_object(data: Any) -> Tuple[bool, Optional[str]]:
    if not data:
        return False, "Request body is required"
    if not isinstance(data, dict):
        return False, "Request body must be an object"
    return True, None


def _run_checks(*checks: Tuple[bool, Optional[str]]) -> Tuple[bool, Optional[str]]:
    for is_valid, error in checks:
        if not is_valid:
            return False, error
    return True, None


def _required(data: Dict, field_name: str, partial: bool) -> bool:
    """Required on create; on update, required once the key is sent (no explicit nulls)."""
    return not partial or field_name in data


def validate_project(data: Dict, partial: bool = False) -> Tuple[bool, Optional[str]]:
    """Validate project create/update payload."""
    is_valid, error = _require_object(data)
    if not is_valid:
        return False, error

    checks = [
        validate_string_field(data.get('name'), 'name', MAX_NAME_LENGTH, required=_required(data, 'name', partial)),
        validate_string_field(data.get('description'), 'description', MAX_DESCRIPTION_LENGTH),
        validate_choice(data.get('status'), 'status', ALLOWED_PROJECT_STATUSES, required='status' in data),
    ]
    asset = data.get('asset')
    if asset is not None:
        if not isinstance(asset, dict):
            return False, "asset must be an object"
        checks.extend([
            validate_string_field(asset.get('name'), 'asset.name', MAX_NAME_LENGTH),
            validate_string_field(asset.get('type'), 'asset.type', MAX_NAME_LENGTH),
            validate_string_field(asset.get('context'), 'asset.context', MAX_TEXT_LENGTH),
            validate_choice(asset.get('criticality'), 'asset.criticality', ALLOWED_CRITICALITIES),
        ])
        standards = asset.get('standards')
        if standards is not None and not isinstance(standards, list):
            return False, "asset.standards must be a list"
    return _run_checks(*checks)


def validate_component(data: Dict, partial: bool = False) -> Tuple[bool, Optional[str]]:
    """Validate component create/update payload."""
    is_valid, error = _require_object(data)
    if not is_valid:
        return False, error
    order = data.get('order')
    if order is not None and (isinstance(order, bool) or not isinstance(order, int)):
        return False, "order must be an integer"
    return _run_checks(
        validate_string_field(data.get('name'), 'name', MAX_NAME_LENGTH, required=_required(data, 'name', partial)),
        validate_string_field(data.get('description'), 'description', MAX_DESCRIPTION_LENGTH),
        validate_string_field(data.get('function'), 'function', MAX_DESCRIPTION_LENGTH),
    )


def validate_failure_mode(data: Dict, partial: bool = False) -> Tuple[bool, Optional[str]]:
    """Validate failure mode create/update payload."""
    is_valid, error = _require_object(data)
    if not is_valid:
        return False, error
    return _run_checks(
        validate_string_field(data.get('description'), 'description', MAX_DESCRIPTION_LENGTH, required=_required(data, 'description', partial)),
        validate_string_field(data.get('processStep'), 'processStep', MAX_NAME_LENGTH),
        validate_choice(data.get('status'), 'status', ALLOWED_FAILURE_MODE_STATUSES, required='status' in data),
    )


def validate_cause(data: Dict, rating_range: Tuple[int, int] = DEFAULT_RATING_RANGE,
                   partial: bool = False) -> Tuple[bool, Optional[str]]:
    """Validate cause payload."""
    is_valid, error = _require_object(data)
    if not is_valid:
        return False, error
    return _run_checks(
        validate_string_field(data.get('description'), 'description', MAX_DESCRIPTION_LENGTH, required=_required(data, 'description', partial)),
        validate_rating(data.get('occurrence'), 'occurrence', rating_range, required=_required(data, 'occurrence', partial)),
    )


def validate_effect(data: Dict, rating_range: Tuple[int, int] = DEFAULT_RATING_RANGE,
                    partial: bool = False) -> Tuple[bool, Optional[str]]:
    """Validate effect payload, including the optional post-mitigation ratings."""
    is_valid, error = _require_object(data)
    if not is_valid:
        return False, error
    checks = [
        validate_string_field(data.get('description'), 'description', MAX_DESCRIPTION_LENGTH, required=_required(data, 'description', partial)),
        validate_rating(data.get('severity'), 'severity', rating_range, required=_required(data, 'severity', partial)),
    ]
    for field in ('severityPost', 'occurrencePost', 'detectionPost'):
        checks.append(validate_rating(data.get(field), field, rating_range, required=False))
    for field in ('potentialCause', 'currentDesign', 'justificationPre', 'justificationPost',
                  'responsible', 'actionStatus'):
        checks.append(validate_string_field(data.get(field), field, MAX_TEXT_LENGTH))
    return _run_checks(*checks)


def validate_control(data: Dict, rating_range: Tuple[int, int] = DEFAULT_RATING_RANGE,
                     partial: bool = False) -> Tuple[bool, Optional[str]]:
    """Validate control payload."""
    is_valid, error = _require_object(data)
    if not is_valid:
        return False, error
    return _run_checks(
        validate_choice(data.get('type'), 'type', ALLOWED_CONTROL_TYPES, required=_required(data, 'type', partial)),
        validate_string_field(data.get('description'), 'description', MAX_DESCRIPTION_LENGTH, required=_required(data, 'description', partial)),
        validate_rating(data.get('detection'), 'detection', rating_range, required=_required(data, 'detection', partial)),
        validate_rating(data.get('effectiveness'), 'effectiveness', rating_range, required=False),
    )


def validate_action(data: Dict, partial: bool = False) -> Tuple[bool, Optional[str]]:
    """Validate action payload."""
    is_valid, error = _require_object(data)
    if not is_valid:
        return False, error
    return _run_checks(
        validate_string_field(data.get('description'), 'description', MAX_DESCRIPTION_LENGTH, required=_required(data, 'description', partial)),
        validate_string_field(data.get('owner'), 'owner', MAX_NAME_LENGTH),
        validate_date(data.get('dueDate'), 'dueDate'),
        validate_choice(data.get('status'), 'status', ALLOWED_ACTION_STATUSES, required='status' in data),
        validate_string_field(data.get('actionTaken'), 'actionTaken', MAX_TEXT_LENGTH),
    )


def validate_settings(data: Dict) -> Tuple[bool, Optional[str]]:
    """
    Validate the structure of a project settings update.
    Band contiguity is reported separately as warnings, not rejected here.
    """
    is_valid, error = _require_object(data)
    if not is_valid:
        return False, error

    risk_matrix = data.get('riskMatrix')
    if risk_matrix is not None:
        if not isinstance(risk_matrix, dict):
            return False, "riskMatrix must be an object"
        size = risk_matrix.get('matrixSize')
        if size is not None and (isinstance(size, bool) or not isinstance(size, int) or size < 1):
            return False, "riskMatrix.matrixSize must be a positive integer"
        is_valid, error = validate_choice(risk_matrix.get('scaleType'), 'riskMatrix.scaleType', ALLOWED_SCALE_TYPES,
                                         required='scaleType' in risk_matrix)
        if not is_valid:
            return False, error

    thresholds = data.get('thresholds')
    if 'thresholds' in data:
        if not isinstance(thresholds, list):
            return False, "thresholds must be a list"
        if not thresholds:
            return False, "thresholds must contain at least one band"
        for i, band in enumerate(thresholds):
            if not isinstance(band, dict):
                return False, f"Threshold {i + 1}: must be an object"
            for key in ('label', 'min', 'max'):
                if key not in band:
                    return False, f"Threshold {i + 1}: missing required field: {key}"
            if not isinstance(band['label'], str) or not band['label'].strip():
                return False, f"Threshold {i + 1}: label must be a non-empty string"
            for key in ('min', 'max'):
                if isinstance(band[key], bool) or not isinstance(band[key], int):
                    return False, f"Threshold {i + 1}: {key} must be an integer"
            if 'color' in band and not isinstance(band['color'], str):
                return False, f"Threshold {i + 1}: color must be a string"

    cutoffs = data.get('dashboardCutoffs')
    if cutoffs is not None:
        if not isinstance(cutoffs, dict):
            return False, "dashboardCutoffs must be an object"
        for key in ('high', 'critical'):
            if key not in cutoffs:
                continue
            value = cutoffs[key]
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                return False, f"dashboardCutoffs.{key} must be a non-negative integer"

    descriptions = data.get('descriptions')
    if descriptions is not None:
        if not isinstance(descriptions, dict):
            return False, "descriptions must be an object"
        for scale, texts in descriptions.items():
            if scale not in ('severity', 'occurrence', 'detection'):
                return False, f"Unknown descriptions scale: {scale}"
            if not isinstance(texts, dict) or not all(isinstance(t, str) for t in texts.values()):
                return False, f"descriptions.{scale} must map ratings to text"

    standards = data.get('standards')
    if standards is not None and not isinstance(standards, list):
        return False, "standards must be a list"

    return True, None


def validate_suggestion_request(data: Dict) -> Tuple[bool, Optional[str]]:
    """Validate AI suggestion request payload."""
    is_valid, error = _require_object(data)
    if not is_valid:
        return False, error
    if not data.get('type') or not data.get('context'):
        return False, "Type and context are required"
    if data['type'] not in ALLOWED_SUGGESTION_TYPES:
        return False, "Invalid suggestion type"
    if not isinstance(data['context'], dict):
        return False, "'context' must be an object"
    return True, None


def validate_duplicate_request(data: Dict) -> Tuple[bool, Optional[str]]:
    """Validate a duplicate-name suggestion request."""
    is_valid, error = _require_object(data)
    if not is_valid:
        return False, error
    if not data.get('type') or not data.get('originalName'):
        return False, "Type and originalName are required"
    if data['type'] not in ALLOWED_DUPLICATE_TYPES:
        return False, "Invalid type. Must be component, failureMode, effect, or componentFunction"
    is_valid, error = validate_string_field(data['originalName'], 'originalName', MAX_DESCRIPTION_LENGTH, required=True)
    if not is_valid:
        return False, error
    if data.get('context') is not None and not isinstance(data['context'], dict):
        return False, "'context' must be an object"
    return True, None


def validate_chat_request(data: Dict) -> Tuple[bool, Optional[str]]:
    """Validate an assistant chat message."""
    is_valid, error = _require_object(data)
    if not is_valid:
        return False, error
    message = data.get('message')
    if not isinstance(message, str) or not message.strip():
        return False, "Message is required"
    if len(message) > MAX_TEXT_LENGTH:
        return False, f"message exceeds maximum length of {MAX_TEXT_LENGTH} characters"
    if data.get('context') is not None and not isinstance(data['context'], dict):
        return False, "'context' must be an object"
    return True, None


def validate_configuration(data: Dict) -> Tuple[bool, Optional[str]]:
    """Validate LLM configuration payload."""
    if not data:
        return False, "Configuration data is required"
    if not isinstance(data, dict):
        return False, "Configuration must be an object"

    for setting_key in ['suggestion_llm_settings', 'explain_llm_settings']:
        if setting_key in data:
            settings = data[setting_key]
            if not isinstance(settings, dict):
                return False, f"{setting_key} must be an object"
            if 'temperature' in settings:
                temp = settings['temperature']
                if not isinstance(temp, (int, float)) or temp < 0 or temp > 2:
                    return False, f"Temperature in {setting_key} must be a number between 0 and 2"

    return True, None
