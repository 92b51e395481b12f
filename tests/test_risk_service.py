"""
Unit tests for the risk aggregation service.
"""
import itertools

import pytest

from fmea_app.services.risk_service import (
    DEFAULT_THRESHOLDS,
    Band,
    RiskScore,
    build_action_status,
    build_chart_data,
    build_dashboard_metrics,
    build_project_report,
    build_risk_distribution,
    build_summary,
    classify_band,
    compute_post_mitigation_risk,
    compute_representative_risk,
    detection_rating,
    max_achievable_rpn,
    rank_failure_modes,
    round_half_up,
    validate_thresholds,
)


def cause(occurrence, description='cause'):
    return {'description': description, 'occurrence': occurrence}


def effect(severity, description='effect', **post):
    return {'description': description, 'severity': severity, **post}


def control(detection):
    return {'type': 'detection', 'description': 'control', 'detection': detection}


def failure_mode(description, causes=(), effects=(), controls=(), actions=(), **extra):
    return {
        'id': extra.pop('id', description),
        'description': description,
        'causes': list(causes),
        'effects': list(effects),
        'controls': list(controls),
        'actions': list(actions),
        **extra,
    }


def failure_mode_with_rpn(rpn, description=None):
    """Single cause/effect pair without controls, so RPN = severity * occurrence * 10."""
    assert rpn % 10 == 0
    product = rpn // 10
    severity = next(s for s in range(10, 0, -1) if product % s == 0 and product // s <= 10)
    return failure_mode(description or f"FM {rpn}", [cause(product // severity)], [effect(severity)])


class TestRepresentativeRisk:
    """Tests for compute_representative_risk."""

    def test_single_pair_without_controls(self):
        """One cause O=5, one effect S=7, no controls gives detection 10 and RPN 350."""
        risk = compute_representative_risk([cause(5)], [effect(7)], [])
        assert risk == RiskScore(rpn=350, severity=7, occurrence=5, detection=10)

    def test_uses_best_control_detection(self):
        """Two causes, one effect, two controls: detection is the minimum and the highest pair wins."""
        risk = compute_representative_risk([cause(3), cause(8)], [effect(6)], [control(4), control(9)])
        assert risk == RiskScore(rpn=192, severity=6, occurrence=8, detection=4)

    def test_no_causes_scores_zero(self):
        """Without causes the score is zero with worst-case detection."""
        risk = compute_representative_risk([], [effect(9)], [control(2)])
        assert risk == RiskScore(rpn=0, severity=0, occurrence=0, detection=10)

    def test_no_effects_scores_zero(self):
        """Without effects the score is zero."""
        risk = compute_representative_risk([cause(9)], [], [])
        assert risk.rpn == 0
        assert risk.detection == 10

    def test_matches_brute_force_maximum(self):
        """RPN equals the maximum product over every cause/effect pair."""
        causes = [cause(2), cause(7), cause(4)]
        effects = [effect(5), effect(9), effect(3)]
        controls = [control(6), control(5)]
        expected = max(e['severity'] * c['occurrence'] * 5 for c in causes for e in effects)
        assert compute_representative_risk(causes, effects, controls).rpn == expected

    def test_order_does_not_change_result(self):
        """Reordering causes, effects and controls gives the same score."""
        causes = [cause(2), cause(7), cause(4)]
        effects = [effect(5), effect(9)]
        controls = [control(6), control(3), control(8)]
        baseline = compute_representative_risk(causes, effects, controls)
        for c_perm, e_perm, k_perm in itertools.product(
            itertools.permutations(causes), itertools.permutations(effects), itertools.permutations(controls)
        ):
            assert compute_representative_risk(list(c_perm), list(e_perm), list(k_perm)) == baseline

    def test_equal_candidates_keep_first_pair(self):
        """Later pairs with an equal RPN do not replace the running maximum."""
        risk = compute_representative_risk([cause(5, 'a'), cause(5, 'b')], [effect(6), effect(6)], [control(4)])
        assert risk == RiskScore(rpn=120, severity=6, occurrence=5, detection=4)

    def test_is_deterministic(self):
        """Two calls with the same inputs return identical results."""
        args = ([cause(3), cause(6)], [effect(7)], [control(5)])
        assert compute_representative_risk(*args) == compute_representative_risk(*args)

    def test_detection_rating_defaults_to_worst_case(self):
        """No controls means detection 10."""
        assert detection_rating([]) == 10
        assert detection_rating([control(7), control(2)]) == 2


class TestPostMitigationRisk:
    """Tests for compute_post_mitigation_risk."""

    def test_product_of_post_ratings(self):
        """All three post ratings present gives their product."""
        assert compute_post_mitigation_risk(effect(7, severityPost=3, occurrencePost=2, detectionPost=4)) == 24

    def test_missing_rating_gives_zero(self):
        """A missing post rating means no post-mitigation score yet."""
        assert compute_post_mitigation_risk(effect(7, severityPost=3, occurrencePost=2)) == 0

    def test_null_rating_gives_zero(self):
        """A stored null counts as missing."""
        assert compute_post_mitigation_risk(effect(7, severityPost=3, occurrencePost=2, detectionPost=None)) == 0


class TestClassifyBand:
    """Tests for classify_band."""

    def test_band_boundaries(self):
        """150 is High and 151 is Critical with the default bands."""
        assert classify_band(150, DEFAULT_THRESHOLDS).label == 'High'
        assert classify_band(151, DEFAULT_THRESHOLDS).label == 'Critical'
        assert classify_band(1, DEFAULT_THRESHOLDS).label == 'Low'
        assert classify_band(70, DEFAULT_THRESHOLDS).label == 'Medium'

    def test_total_over_all_rpns(self):
        """Every RPN from 0 upwards maps to exactly one band."""
        for rpn in range(0, 1200):
            assert isinstance(classify_band(rpn, DEFAULT_THRESHOLDS), Band)

    def test_falls_back_to_last_band(self):
        """An RPN outside every band returns the last band."""
        bands = [{'label': 'Low', 'min': 1, 'max': 10, 'color': 'green'},
                 {'label': 'High', 'min': 20, 'max': 30, 'color': 'red'}]
        assert classify_band(15, bands).label == 'High'
        assert classify_band(0, bands).label == 'High'

    def test_first_matching_band_wins_on_overlap(self):
        """Overlapping bands resolve to the first one listed."""
        bands = [{'label': 'A', 'min': 1, 'max': 100, 'color': 'green'},
                 {'label': 'B', 'min': 50, 'max': 200, 'color': 'red'}]
        assert classify_band(75, bands).label == 'A'

    def test_accepts_band_objects(self):
        """Band dataclasses and dicts can be mixed."""
        bands = [Band('Low', 1, 99, 'green'), {'label': 'High', 'min': 100, 'max': 1000, 'color': '#ff0000'}]
        band = classify_band(500, bands)
        assert band.label == 'High'
        assert band.hex_color == '#ff0000'

    def test_named_color_resolves_to_hex(self):
        """Named colours map to a hex value for display."""
        assert classify_band(10, DEFAULT_THRESHOLDS).hex_color.startswith('#')

    def test_empty_thresholds_raises(self):
        """There is no band to return from an empty list."""
        with pytest.raises(ValueError):
            classify_band(10, [])


class TestValidateThresholds:
    """Tests for validate_thresholds."""

    def test_default_bands_are_valid(self):
        """The default band list covers 1..1000 without gaps."""
        assert validate_thresholds(DEFAULT_THRESHOLDS, max_achievable_rpn(10)) == []

    def test_empty_list(self):
        """An empty list is reported, not raised."""
        messages = validate_thresholds([], 1000)
        assert len(messages) == 1

    def test_overlap_and_gap(self):
        """Overlaps and gaps are both described."""
        bands = [
            {'label': 'Low', 'min': 1, 'max': 80},
            {'label': 'Medium', 'min': 70, 'max': 99},
            {'label': 'High', 'min': 120, 'max': 1000},
        ]
        messages = validate_thresholds(bands, 1000)
        assert any('overlap' in m for m in messages)
        assert any('Gap' in m and '100-119' in m for m in messages)

    def test_must_start_at_one(self):
        """The lowest band must begin at RPN 1."""
        messages = validate_thresholds([{'label': 'All', 'min': 5, 'max': 1000}], 1000)
        assert any('start at 1' in m for m in messages)

    def test_must_reach_maximum(self):
        """The highest band must reach the largest achievable RPN."""
        messages = validate_thresholds([{'label': 'All', 'min': 1, 'max': 500}], 1000)
        assert any('1000' in m for m in messages)

    def test_min_greater_than_max(self):
        """Inverted bands are reported."""
        messages = validate_thresholds([{'label': 'Bad', 'min': 10, 'max': 1}], 10)
        assert any('greater than' in m for m in messages)

    def test_small_scale_maximum(self):
        """A 1-5 scale tops out at 125."""
        assert max_achievable_rpn(5) == 125
        assert validate_thresholds([{'label': 'All', 'min': 1, 'max': 125}], 125) == []


class TestDashboardMetrics:
    """Tests for the aggregate dashboard figures."""

    def test_ten_failure_modes(self):
        """Four modes at or above 200 and two at or above 300."""
        rpns = [320, 400, 200, 250, 150, 100, 80, 60, 40, 0]
        fms = [failure_mode_with_rpn(r) if r else failure_mode('empty') for r in rpns]
        metrics = build_dashboard_metrics(fms, [])
        assert metrics['totalFailureModes'] == 10
        assert metrics['highRiskModes'] == 4
        assert metrics['criticalModes'] == 2
        assert metrics['averageRPN'] == round_half_up(sum(rpns) / 10)

    def test_empty_project(self):
        """No failure modes gives zeros, not a division error."""
        metrics = build_dashboard_metrics([], [])
        assert metrics['averageRPN'] == 0
        assert metrics['totalFailureModes'] == 0

    def test_custom_cutoffs(self):
        """Dashboard cutoffs are configurable independently of the bands."""
        fms = [failure_mode_with_rpn(120), failure_mode_with_rpn(180)]
        metrics = build_dashboard_metrics(fms, [], {'high': 100, 'critical': 150})
        assert metrics['highRiskModes'] == 2
        assert metrics['criticalModes'] == 1

    def test_action_counts(self):
        """Open and completed actions are counted by status."""
        actions = [{'status': 'open'}, {'status': 'open'}, {'status': 'completed'}, {'status': 'in-progress'}]
        metrics = build_dashboard_metrics([], actions)
        assert metrics['openActions'] == 2
        assert metrics['completedActions'] == 1

    def test_average_rounds_half_up(self):
        """A mean of x.5 rounds up."""
        fms = [failure_mode_with_rpn(10)] + [failure_mode(f'empty {i}') for i in range(3)]
        # mean 2.5
        assert build_dashboard_metrics(fms, [])['averageRPN'] == 3
        assert round_half_up(2.5) == 3


class TestChartData:
    """Tests for chart data built from the same scores."""

    def test_risk_distribution_percentages(self):
        """Four fixed buckets with rounded percentages."""
        distribution = build_risk_distribution([10, 60, 150, 250])
        assert [d['count'] for d in distribution] == [1, 1, 1, 1]
        assert all(d['percentage'] == 25 for d in distribution)

    def test_risk_distribution_empty(self):
        """0% everywhere when there is nothing to count."""
        assert all(d['percentage'] == 0 and d['count'] == 0 for d in build_risk_distribution([]))

    def test_action_status_breakdown(self):
        """Every action status is listed, even at zero."""
        result = build_action_status([{'status': 'open'}, {'status': 'cancelled'}, {'status': 'cancelled'}])
        by_status = {r['status']: r for r in result}
        assert by_status['Cancelled']['count'] == 2
        assert by_status['Cancelled']['percentage'] == 67
        assert by_status['Completed']['count'] == 0

    def test_top_risks_sorted_and_truncated(self):
        """Top risks are ordered by RPN and long names are shortened."""
        long_name = 'A very long failure mode description that goes on'
        fms = [failure_mode_with_rpn(100, 'low'), failure_mode_with_rpn(400, long_name), failure_mode_with_rpn(200, 'mid')]
        chart = build_chart_data(fms, [], top_n=2)
        assert [t['rpn'] for t in chart['topRisks']] == [400, 200]
        assert chart['topRisks'][0]['failureMode'] == long_name[:30] + '...'
        assert len(chart['rpnHeatmap']) == 3

    def test_ranking_is_stable(self):
        """Failure modes with equal RPN keep their input order."""
        fms = [failure_mode_with_rpn(100, 'first'), failure_mode_with_rpn(100, 'second')]
        ranked = rank_failure_modes(fms)
        assert [r['failureMode']['description'] for r in ranked] == ['first', 'second']

    def test_project_report_shape(self):
        """The report combines metrics and chart data."""
        report = build_project_report([failure_mode_with_rpn(350)], [{'status': 'open'}])
        assert report['metrics']['criticalModes'] == 1
        assert set(report['chartData']) == {'rpnHeatmap', 'topRisks', 'riskDistribution', 'actionStatus'}


class TestSummary:
    """Tests for the summary figures."""

    def test_summary_uses_project_bands(self):
        """Band counts follow the project's thresholds, not the dashboard cutoffs."""
        components = [{'id': 'c1', 'name': 'Pump'}]
        fms = [
            failure_mode_with_rpn(160, 'a'),
            failure_mode_with_rpn(90, 'b'),
            failure_mode('empty'),
        ]
        for fm in fms:
            fm['componentId'] = 'c1'
        fms[0]['actions'] = [{'status': 'completed'}, {'status': 'open'}]

        summary = build_summary(components, fms, DEFAULT_THRESHOLDS, top_n=5)
        assert summary['bandCounts'] == {'Low': 0, 'Medium': 1, 'High': 0, 'Critical': 1}
        assert summary['highestRPN'] == 160
        assert summary['completionRate'] == 50
        assert summary['topRisks'][0]['component'] == 'Pump'
        assert summary['topRisks'][0]['band'] == 'Critical'
        assert summary['topRisks'][-1]['band'] is None

    def test_summary_top_n(self):
        """Only the requested number of top risks is returned."""
        fms = [failure_mode_with_rpn(r * 10) for r in range(1, 9)]
        summary = build_summary([], fms, DEFAULT_THRESHOLDS, top_n=5)
        assert len(summary['topRisks']) == 5
        assert summary['topRisks'][0]['rpn'] == 80

    def test_negative_top_n_is_clamped(self):
        """A negative limit returns no top risks instead of trimming from the end."""
        fms = [failure_mode_with_rpn(r * 10) for r in range(1, 4)]
        assert build_summary([], fms, DEFAULT_THRESHOLDS, top_n=-1)['topRisks'] == []
        assert build_chart_data(fms, [], top_n=-1)['topRisks'] == []
