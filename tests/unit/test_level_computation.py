"""Level computation tests."""

from loyalty.gamification.level_thresholds import LEVEL_THRESHOLDS, compute_level


class TestLevelComputation:
    def test_level_1_at_zero_points(self):
        result = compute_level(0)
        assert result["level"] == 1
        assert result["title"] == "Wanderer"

    def test_level_boundary_99_points(self):
        """99 points is still level 1."""
        assert compute_level(99)["level"] == 1

    def test_level_2_at_100_points(self):
        result = compute_level(100)
        assert result["level"] == 2
        assert result["title"] == "Day Tripper"

    def test_points_into_level(self):
        result = compute_level(150)
        assert result["points_into_level"] == 50
        assert result["points_for_level"] == 200  # 300 - 100
        assert result["next_level"] == 3

    def test_max_level(self):
        result = compute_level(1_000_000)
        assert result["level"] == 10
        assert result["title"] == "Legend of the Road"
        assert result["next_level"] == 10
        assert result["points_for_level"] == 1

    def test_thresholds_strictly_increase(self):
        cumulative = [t["cumulative"] for t in LEVEL_THRESHOLDS]
        assert cumulative == sorted(set(cumulative))
        assert [t["level"] for t in LEVEL_THRESHOLDS] == list(range(1, len(LEVEL_THRESHOLDS) + 1))

    def test_every_threshold_reaches_its_level(self):
        for threshold in LEVEL_THRESHOLDS:
            assert compute_level(threshold["cumulative"])["level"] == threshold["level"]
