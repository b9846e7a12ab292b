"""Explorer level thresholds keyed on point balance."""

from __future__ import annotations

LEVEL_THRESHOLDS: list[dict] = [
    {"level": 1, "title": "Wanderer", "cumulative": 0},
    {"level": 2, "title": "Day Tripper", "cumulative": 100},
    {"level": 3, "title": "Trail Finder", "cumulative": 300},
    {"level": 4, "title": "Pathfinder", "cumulative": 700},
    {"level": 5, "title": "Explorer", "cumulative": 1500},
    {"level": 6, "title": "Voyager", "cumulative": 3000},
    {"level": 7, "title": "Trailblazer", "cumulative": 6000},
    {"level": 8, "title": "Navigator", "cumulative": 10000},
    {"level": 9, "title": "Globetrotter", "cumulative": 16000},
    {"level": 10, "title": "Legend of the Road", "cumulative": 25000},
]


def compute_level(points: int) -> dict:
    """Compute level info from a point balance."""
    current = LEVEL_THRESHOLDS[0]
    next_level = LEVEL_THRESHOLDS[1]

    for i in range(len(LEVEL_THRESHOLDS) - 1):
        if points >= LEVEL_THRESHOLDS[i]["cumulative"]:
            current = LEVEL_THRESHOLDS[i]
            next_level = LEVEL_THRESHOLDS[i + 1]

    if points >= LEVEL_THRESHOLDS[-1]["cumulative"]:
        current = LEVEL_THRESHOLDS[-1]
        next_level = LEVEL_THRESHOLDS[-1]

    points_into_level = points - current["cumulative"]
    points_for_level = next_level["cumulative"] - current["cumulative"]

    # At max level, avoid division by zero
    if points_for_level == 0:
        points_for_level = 1

    return {
        "level": current["level"],
        "title": current["title"],
        "points_into_level": max(points_into_level, 0),
        "points_for_level": points_for_level,
        "next_level": next_level["level"],
        "next_title": next_level["title"],
    }
