"""
Tests for the Weekly Pattern Analyzer

Window is the 7 days ending on window_end; 2025-03-03 is a Monday.
"""
import pytest
from datetime import date, timedelta

from services.engagement_types import (
    Action,
    ActionType,
    INSIGHT_MESSAGES,
    InsightType,
    RelationshipStrength,
    TEXT_TO_CALL_MESSAGE,
)
from services.weekly_pattern import (
    ConnectionSnapshot,
    analyze_weekly_pattern,
    consistency_score,
    depth_score,
    generate_suggested_actions,
    variety_score,
)

MON = date(2025, 3, 3)
SUN = MON + timedelta(days=6)


def _actions(entries):
    """entries: list of (day offset from MON, ActionType)"""
    return [
        Action(f"a{i}", "u1", "c1", action_type, MON + timedelta(days=offset))
        for i, (offset, action_type) in enumerate(entries)
    ]


T, C, P = ActionType.TEXT, ActionType.CALL, ActionType.IN_PERSON


class TestScores:

    def test_depth_is_weight_share_of_calls_and_in_person(self):
        assert depth_score(_actions([(0, T), (0, C)])) == 75
        assert depth_score(_actions([(0, T), (1, T)])) == 0
        assert depth_score([]) == 0

    def test_variety(self):
        assert variety_score(_actions([(0, T), (1, T)])) == 33
        assert variety_score(_actions([(0, T), (1, C), (2, P)])) == 100
        assert variety_score([]) == 0

    def test_consistency_bounds(self):
        assert consistency_score([]) == 0
        assert consistency_score(range(7)) == 100

    def test_spread_days_beat_clustered_days(self):
        clustered = consistency_score([0, 1, 2, 3])
        spread = consistency_score([0, 2, 4, 6])
        assert clustered == 43
        assert spread == 57
        assert spread > clustered

    def test_single_day_is_sporadic(self):
        assert consistency_score([0]) == 11


class TestInsights:
    """First matching rule wins"""

    def test_contact_not_depth(self):
        pattern = analyze_weekly_pattern(_actions([(0, T), (1, T), (2, T), (3, T)]), SUN)
        assert pattern.insight_type == InsightType.CONTACT_NOT_DEPTH
        assert pattern.insight_message == INSIGHT_MESSAGES[InsightType.CONTACT_NOT_DEPTH]

    def test_two_texts_are_not_enough_for_depth_insight(self):
        pattern = analyze_weekly_pattern(_actions([(0, T), (3, T)]), SUN)
        assert pattern.insight_type != InsightType.CONTACT_NOT_DEPTH

    def test_good_depth(self):
        pattern = analyze_weekly_pattern(_actions([(0, P), (2, T)]), SUN)
        assert pattern.depth_score == 86
        assert pattern.insight_type == InsightType.GOOD_DEPTH

    def test_sporadic(self):
        pattern = analyze_weekly_pattern(_actions([(0, C), (0, T), (0, T), (0, T)]), SUN)
        assert pattern.depth_score == 50
        assert pattern.insight_type == InsightType.SPORADIC

    def _balanced_week(self):
        entries = []
        for offset in (0, 2, 4, 6):
            entries += [(offset, C), (offset, T), (offset, T), (offset, T)]
        return _actions(entries)

    def test_escalating_against_previous_week(self):
        previous = [Action("p1", "u1", "c1", C, MON - timedelta(days=3)),
                    Action("p2", "u1", "c1", T, MON - timedelta(days=2))]
        pattern = analyze_weekly_pattern(self._balanced_week(), SUN, previous_week_actions=previous)
        assert pattern.total_weight == 24
        assert pattern.insight_type == InsightType.ESCALATING

    def test_consistent_without_previous_week(self):
        pattern = analyze_weekly_pattern(self._balanced_week(), SUN)
        assert pattern.consistency_score == 57
        assert pattern.insight_type == InsightType.CONSISTENT


class TestPatternFields:

    def test_window_and_breakdown(self):
        actions = _actions([(-1, P), (0, T), (1, C), (4, T)])
        pattern = analyze_weekly_pattern(actions, SUN)

        assert pattern.week_start == MON
        assert pattern.week_end == SUN
        assert pattern.valid_days == 3
        assert pattern.total_weight == 5
        assert pattern.action_breakdown == {T: 2, C: 1, P: 0}

    def test_dominant_tie_goes_to_deeper_type(self):
        pattern = analyze_weekly_pattern(_actions([(0, T), (1, C)]), SUN)
        assert pattern.dominant_action_type == C

    def test_empty_week(self):
        pattern = analyze_weekly_pattern([], SUN)
        assert pattern.dominant_action_type is None
        assert pattern.valid_days == 0
        assert pattern.insight_type == InsightType.SPORADIC


class TestSuggestedActions:

    def test_struggling_connections_first(self):
        pattern = analyze_weekly_pattern(_actions([(0, T), (1, T), (2, T)]), SUN)
        connections = [
            ConnectionSnapshot("c3", "Robin", RelationshipStrength.STRONG),
            ConnectionSnapshot("c2", "Alex", RelationshipStrength.THINNING, last_nudge_level=1),
            ConnectionSnapshot("c1", "Jo", RelationshipStrength.DECAYING),
        ]

        suggestions = generate_suggested_actions(pattern, connections)

        assert [s.target_connection_id for s in suggestions[:2]] == ["c1", "c2"]
        assert suggestions[0].priority == "high"
        assert suggestions[0].action_type == T
        assert suggestions[1].priority == "medium"
        assert suggestions[1].action_type == C
        assert suggestions[2].reason == TEXT_TO_CALL_MESSAGE
        assert suggestions[3].action_type == C
        assert suggestions[3].priority == "low"
        assert len(suggestions) == 4

    def test_top_rung_offered_no_more_nudges(self):
        pattern = analyze_weekly_pattern(_actions([(0, P), (1, C), (2, T)]), SUN)
        connections = [ConnectionSnapshot("c1", "Jo", RelationshipStrength.DECAYING, last_nudge_level=3)]
        assert generate_suggested_actions(pattern, connections) == []

    def test_capped_at_five(self):
        pattern = analyze_weekly_pattern(_actions([(0, T)]), SUN)
        connections = [
            ConnectionSnapshot(f"c{i}", f"N{i}", RelationshipStrength.DECAYING) for i in range(6)
        ]
        assert len(generate_suggested_actions(pattern, connections)) <= 5
