"""
Tests for the Ring Visualization Mapper
"""
import pytest
from datetime import datetime, timedelta, timezone

from services.engagement_types import ActionType, RelationshipStrength
from services.ring_visualization import (
    DEFAULT_PALETTE,
    FADING_PALETTES,
    RING_PALETTES,
    calculate_ring_visualization,
    get_contact_palette,
    get_ring_status_description,
    hash_string,
)

S = RelationshipStrength
NOW = datetime(2025, 3, 31, 12, 0, tzinfo=timezone.utc)


class TestHashString:
    """h = h*31 + code unit, wrapped to int32, absolute value"""

    def test_small_values(self):
        assert hash_string("") == 0
        assert hash_string("a") == 97
        assert hash_string("ab") == 3105

    def test_matches_int32_wraparound(self):
        assert hash_string("hello") == 99162322
        assert hash_string("Hello World") == 862545276

    def test_surrogate_pairs_hash_as_two_units(self):
        assert hash_string("\U0001F600") == 0xD83D * 31 + 0xDE00

    def test_stable(self):
        assert hash_string("Jordan Lee") == hash_string("Jordan Lee")

    def test_palette_from_hash(self):
        assert get_contact_palette("a") == RING_PALETTES[1]


class TestRingVisualization:

    def test_recent_strong_ring_gets_full_boost(self):
        ring = calculate_ring_visualization(S.STRONG, 0)
        assert ring.fill_percent == pytest.approx(90)
        assert ring.inner_opacity == pytest.approx(0.95)
        assert ring.outer_opacity == pytest.approx(0.95 * 0.55)
        assert not ring.should_pulse

    def test_partial_boost(self):
        ring = calculate_ring_visualization(S.STABLE, 7)
        assert ring.fill_percent == pytest.approx(58)
        assert ring.inner_opacity == pytest.approx(0.58)

    def test_staleness_penalty(self):
        ring = calculate_ring_visualization(S.STABLE, 20)
        assert ring.fill_percent == pytest.approx(55)
        assert ring.inner_opacity == pytest.approx(0.55)
        assert not ring.should_pulse

    def test_clamped(self):
        high = calculate_ring_visualization(S.FLOURISHING, 0)
        low = calculate_ring_visualization(S.DECAYING, 60)
        assert high.fill_percent == 100
        assert high.inner_opacity == 1.0
        assert low.fill_percent == 8
        assert low.inner_opacity == pytest.approx(0.2)

    def test_pulse_rules(self):
        anchor = NOW - timedelta(days=4)
        assert calculate_ring_visualization(S.THINNING, 3, anchor).should_pulse
        assert not calculate_ring_visualization(S.THINNING, 2, anchor).should_pulse
        assert calculate_ring_visualization(S.STABLE, 21).should_pulse

    def test_never_contacted(self):
        ring = calculate_ring_visualization(S.STABLE, None)
        assert ring.fill_percent == pytest.approx(43)
        assert ring.should_pulse

    def test_colors(self):
        assert (calculate_ring_visualization(S.STRONG, 1).inner_color,
                calculate_ring_visualization(S.STRONG, 1).outer_color) == DEFAULT_PALETTE
        named = calculate_ring_visualization(S.STRONG, 1, contact_name="a")
        assert (named.inner_color, named.outer_color) == RING_PALETTES[1]
        fading = calculate_ring_visualization(S.DECAYING, 40, contact_name="a")
        assert (fading.inner_color, fading.outer_color) in FADING_PALETTES

    @pytest.mark.parametrize("strength,label,css", [
        (S.FLOURISHING, "Flourishing", "healthy"),
        (S.STRONG, "Strong", "healthy"),
        (S.STABLE, "Stable", "moderate"),
        (S.THINNING, "Needs attention", "fading"),
        (S.DECAYING, "Fading", "fading"),
    ])
    def test_labels(self, strength, label, css):
        ring = calculate_ring_visualization(strength, 5)
        assert ring.status_label == label
        assert ring.strength_class == css


class TestRingStatusDescription:

    def test_strong_called_yesterday(self):
        text = get_ring_status_description(S.STRONG, 1, ActionType.CALL)
        assert text == "You called yesterday. A strong connection. Keep showing up and the rings stay full."

    def test_time_buckets(self):
        assert get_ring_status_description(S.STABLE, 10, ActionType.TEXT).startswith("You messaged last week.")
        assert get_ring_status_description(S.STABLE, 20, ActionType.IN_PERSON).startswith("You met 2 weeks ago.")
        assert get_ring_status_description(S.STABLE, 65, ActionType.TEXT).startswith("You messaged 2 months ago.")

    def test_without_action_type(self):
        assert get_ring_status_description(S.STRONG, 0, None).startswith("You were in touch today.")
        assert get_ring_status_description(S.STABLE, None, None).startswith("No contact recorded yet.")
        assert get_ring_status_description(S.STABLE, 4, None).startswith("Last contact was 4 days ago.")

    def test_thinning_counts_from_decay_anchor(self):
        anchor = NOW - timedelta(days=12)
        text = get_ring_status_description(S.THINNING, 30, ActionType.TEXT, anchor, NOW)
        assert "thinning for 12 days" in text

    def test_thinning_singular_day(self):
        text = get_ring_status_description(S.THINNING, 1, None, None, NOW)
        assert "thinning for 1 day." in text

    def test_decaying(self):
        text = get_ring_status_description(S.DECAYING, 90, ActionType.CALL)
        assert "The connection is fading." in text
