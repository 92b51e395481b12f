"""
Unit tests for input validators.
"""
from fmea_app.validators import (
    MAX_NAME_LENGTH,
    MAX_TEXT_LENGTH,
    validate_action,
    validate_cause,
    validate_chat_request,
    validate_configuration,
    validate_control,
    validate_duplicate_request,
    validate_effect,
    validate_failure_mode,
    validate_id,
    validate_project,
    validate_rating,
    validate_settings,
    validate_suggestion_request,
)


class TestValidateId:
    """Tests for validate_id function."""

    def test_valid_ids(self):
        """UUIDs and simple slugs are accepted."""
        for value in ['3f1c9a2e-8d5b-4c1e-9f00-1234567890ab', 'proj_1']:
            is_valid, error = validate_id(value)
            assert is_valid is True
            assert error is None

    def test_invalid_characters(self):
        """Markup in an id is rejected."""
        is_valid, error = validate_id('<script>')
        assert is_valid is False
        assert 'invalid' in error.lower()

    def test_missing_id(self):
        """Empty ids are rejected."""
        is_valid, error = validate_id('')
        assert is_valid is False
        assert 'required' in error.lower()


class TestValidateRating:
    """Tests for validate_rating function."""

    def test_in_range(self):
        """Boundary values of the default scale are valid."""
        assert validate_rating(1, 'severity')[0] is True
        assert validate_rating(10, 'severity')[0] is True

    def test_out_of_range(self):
        """Values outside the scale are rejected with the range in the message."""
        is_valid, error = validate_rating(11, 'severity')
        assert is_valid is False
        assert '1 and 10' in error

    def test_small_scale(self):
        """A 1-5 scale rejects 6."""
        is_valid, error = validate_rating(6, 'occurrence', (1, 5))
        assert is_valid is False
        assert '1 and 5' in error

    def test_non_integer(self):
        """Floats, strings and booleans are not ratings."""
        for value in [5.5, '5', True]:
            is_valid, _ = validate_rating(value, 'detection')
            assert is_valid is False

    def test_optional_rating(self):
        """A missing optional rating is fine."""
        assert validate_rating(None, 'severityPost', required=False) == (True, None)


class TestValidateProject:
    """Tests for validate_project function."""

    def test_valid_project(self, sample_project):
        """A complete project payload passes."""
        assert validate_project(sample_project) == (True, None)

    def test_missing_name(self):
        """Name is required on create."""
        is_valid, error = validate_project({'description': 'x'})
        assert is_valid is False
        assert 'name' in error

    def test_partial_update_without_name(self):
        """Updates may omit the name."""
        assert validate_project({'status': 'completed'}, partial=True) == (True, None)

    def test_name_too_long(self):
        """Overlong names are rejected."""
        is_valid, error = validate_project({'name': 'x' * (MAX_NAME_LENGTH + 1)})
        assert is_valid is False
        assert 'maximum length' in error

    def test_invalid_status(self):
        """Unknown project statuses are rejected."""
        is_valid, _ = validate_project({'name': 'P', 'status': 'archived'})
        assert is_valid is False

    def test_invalid_criticality(self):
        """Asset criticality must be a known level."""
        is_valid, error = validate_project({'name': 'P', 'asset': {'criticality': 'extreme'}})
        assert is_valid is False
        assert 'criticality' in error

    def test_empty_body(self):
        """An empty body is rejected."""
        is_valid, error = validate_project(None)
        assert is_valid is False
        assert 'required' in error.lower()


class TestValidateChildren:
    """Tests for cause, effect, control, action and failure mode payloads."""

    def test_valid_cause(self):
        """Description and occurrence are enough for a cause."""
        assert validate_cause({'description': 'Wear', 'occurrence': 4}) == (True, None)

    def test_cause_missing_occurrence(self):
        """Occurrence is required on create."""
        is_valid, error = validate_cause({'description': 'Wear'})
        assert is_valid is False
        assert 'occurrence' in error

    def test_cause_partial_update(self):
        """An update may change just the description."""
        assert validate_cause({'description': 'Wear'}, partial=True) == (True, None)

    def test_partial_update_rejects_nulls(self):
        """Sending null for a required field is not the same as leaving it out."""
        assert validate_cause({'occurrence': None}, partial=True) == (False, 'occurrence is required')
        assert validate_effect({'severity': None}, partial=True)[0] is False
        assert validate_control({'detection': None}, partial=True)[0] is False
        assert validate_control({'type': None}, partial=True)[0] is False
        assert validate_action({'description': None}, partial=True)[0] is False
        assert validate_failure_mode({'status': None}, partial=True)[0] is False

    def test_optional_ratings_stay_nullable(self):
        """Post-mitigation ratings and effectiveness may be cleared."""
        assert validate_effect({'severityPost': None, 'detectionPost': None}, partial=True) == (True, None)
        assert validate_control({'effectiveness': None}, partial=True) == (True, None)

    def test_effect_post_ratings_checked(self):
        """Post-mitigation ratings obey the scale too."""
        is_valid, error = validate_effect({'description': 'Leak', 'severity': 5, 'detectionPost': 12})
        assert is_valid is False
        assert 'detectionPost' in error

    def test_effect_on_small_scale(self):
        """Effect severity is checked against the project scale."""
        is_valid, _ = validate_effect({'description': 'Leak', 'severity': 7}, (1, 5))
        assert is_valid is False

    def test_control_type(self):
        """Control type must be prevention or detection."""
        is_valid, error = validate_control({'type': 'correction', 'description': 'x', 'detection': 3})
        assert is_valid is False
        assert 'type' in error
        assert validate_control({'type': 'prevention', 'description': 'x', 'detection': 3}) == (True, None)

    def test_action_status_and_date(self):
        """Action status and due date are validated."""
        assert validate_action({'description': 'Fix', 'status': 'in-progress', 'dueDate': '2025-03-01'}) == (True, None)
        assert validate_action({'description': 'Fix', 'status': 'done'})[0] is False
        assert validate_action({'description': 'Fix', 'dueDate': 'next week'})[0] is False

    def test_failure_mode_status(self):
        """Failure mode status must be known."""
        assert validate_failure_mode({'description': 'Leak', 'status': 'on-hold'}) == (True, None)
        assert validate_failure_mode({'description': 'Leak', 'status': 'open'})[0] is False


class TestValidateSettings:
    """Tests for validate_settings function."""

    def test_valid_partial_update(self):
        """A scale change on its own is valid."""
        assert validate_settings({'riskMatrix': {'scaleType': '1-5'}}) == (True, None)

    def test_invalid_scale_type(self):
        """Only the two supported scales are accepted."""
        is_valid, error = validate_settings({'riskMatrix': {'scaleType': '1-7'}})
        assert is_valid is False
        assert 'scaleType' in error

    def test_matrix_size_must_be_number(self):
        """matrixSize must be a positive integer."""
        assert validate_settings({'riskMatrix': {'matrixSize': 'big'}})[0] is False

    def test_thresholds_must_be_list(self):
        """Thresholds are a list of bands."""
        assert validate_settings({'thresholds': {'label': 'Low'}})[0] is False

    def test_threshold_missing_field(self):
        """Each band needs label, min and max."""
        is_valid, error = validate_settings({'thresholds': [{'label': 'Low', 'min': 1}]})
        assert is_valid is False
        assert 'max' in error

    def test_standards_must_be_list(self):
        """Standards are a list."""
        assert validate_settings({'standards': 'SAE J1739'})[0] is False

    def test_dashboard_cutoffs(self):
        """Cutoffs must be non-negative integers."""
        assert validate_settings({'dashboardCutoffs': {'high': 150}}) == (True, None)
        assert validate_settings({'dashboardCutoffs': {'critical': -1}})[0] is False
        assert validate_settings({'dashboardCutoffs': {'high': None}})[0] is False

    def test_empty_thresholds(self):
        """At least one band is required."""
        assert validate_settings({'thresholds': []}) == (False, 'thresholds must contain at least one band')
        assert validate_settings({'thresholds': None})[0] is False

    def test_band_label_and_color_types(self):
        """Labels are non-empty strings and colours are strings."""
        band = {'label': 'Low', 'min': 1, 'max': 1000, 'color': 'green'}
        assert validate_settings({'thresholds': [band]}) == (True, None)
        assert validate_settings({'thresholds': [dict(band, label=None)]})[0] is False
        assert validate_settings({'thresholds': [dict(band, label=' ')]})[0] is False
        is_valid, error = validate_settings({'thresholds': [dict(band, color=[0, 255, 0])]})
        assert is_valid is False
        assert error == 'Threshold 1: color must be a string'

    def test_descriptions(self):
        """Descriptions map known scales to rating texts."""
        assert validate_settings({'descriptions': {'severity': {'10': 'Hazardous'}}}) == (True, None)
        assert validate_settings({'descriptions': {'impact': {}}})[0] is False
        assert validate_settings({'descriptions': {'severity': {'10': 10}}})[0] is False


class TestValidateSuggestionRequest:
    """Tests for validate_suggestion_request function."""

    def test_valid_request(self):
        """Known type and object context pass."""
        assert validate_suggestion_request({'type': 'causes', 'context': {'asset': {}}}) == (True, None)

    def test_missing_context(self):
        """Type and context are both required."""
        is_valid, error = validate_suggestion_request({'type': 'causes'})
        assert is_valid is False
        assert error == 'Type and context are required'

    def test_unknown_type(self):
        """Unknown suggestion types are rejected."""
        is_valid, error = validate_suggestion_request({'type': 'owners', 'context': {'a': 1}})
        assert is_valid is False
        assert error == 'Invalid suggestion type'


class TestValidateDuplicateRequest:
    """Tests for validate_duplicate_request function."""

    def test_valid_request(self):
        """Type and original name are enough."""
        assert validate_duplicate_request({'type': 'effect', 'originalName': 'Fluid loss'}) == (True, None)

    def test_missing_original_name(self):
        """originalName is required."""
        assert validate_duplicate_request({'type': 'component'}) == (False, 'Type and originalName are required')

    def test_unknown_type(self):
        """Only the four duplicate types are accepted."""
        is_valid, error = validate_duplicate_request({'type': 'action', 'originalName': 'x'})
        assert is_valid is False
        assert error.startswith('Invalid type')

    def test_context_must_be_object(self):
        """A context, when sent, is an object."""
        data = {'type': 'component', 'originalName': 'Seal', 'context': 'pump'}
        assert validate_duplicate_request(data)[0] is False


class TestValidateChatRequest:
    """Tests for validate_chat_request function."""

    def test_valid_message(self):
        """A message with an optional context passes."""
        assert validate_chat_request({'message': 'What is RPN?', 'context': {}}) == (True, None)

    def test_blank_message(self):
        """Whitespace-only messages are rejected."""
        assert validate_chat_request({'message': '  '}) == (False, 'Message is required')

    def test_message_too_long(self):
        """Messages are bounded in length."""
        assert validate_chat_request({'message': 'x' * (MAX_TEXT_LENGTH + 1)})[0] is False


class TestValidateConfiguration:
    """Tests for validate_configuration function."""

    def test_valid_configuration(self):
        """A temperature within range passes."""
        config = {'suggestion_llm_settings': {'model': 'gemini-1.5-flash', 'temperature': 0.4}}
        assert validate_configuration(config) == (True, None)

    def test_temperature_out_of_range(self):
        """Temperature above 2 is rejected."""
        is_valid, error = validate_configuration({'explain_llm_settings': {'temperature': 3}})
        assert is_valid is False
        assert 'Temperature' in error

    def test_empty_configuration(self):
        """An empty body is rejected."""
        assert validate_configuration({})[0] is False
