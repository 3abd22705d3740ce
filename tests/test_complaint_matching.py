import pytest

from repair_desk.intelligence.complaint_matching import estimate_labor_hours, rank_common_problems


def test_exact_match_dominates_labor_estimate():
    result = estimate_labor_hours(
        "Brake noise   FRONT",
        [("brake noise front", 2.0), ("oil change", 0.5), (None, 1.0)],
    )
    assert result == {"labor_hours": 2.0, "confidence": 0.85, "source": "shop_history"}


def test_labor_estimate_is_weighted_by_score():
    result = estimate_labor_hours(
        "brake noise front",
        [("brake noise", 2.0), ("front brake noise and grinding", 3.0)],
    )
    # weights 1.0 and 0.5: (2.0 + 1.5) / 1.5
    assert result["labor_hours"] == 2.3
    assert result["confidence"] == 0.85


def test_weak_overlap_has_floor_confidence():
    result = estimate_labor_hours("brake noise front", [("engine misfire noise", 1.0)])
    assert result == {"labor_hours": 1.0, "confidence": 0.2, "source": "shop_history"}


def test_no_history_match():
    result = estimate_labor_hours("ac blows warm", [("oil change", 0.5), ("brake noise", None)])
    assert result == {"labor_hours": None, "confidence": 0, "source": "none"}


def test_common_problems_ranked_by_frequency():
    history = [
        ("brake noise front", "Worn pads", None),
        ("Brake noise front left", "Worn pads", None),
        ("brake noise when stopping", "Worn pads", None),
        ("noisy brakes", "Sticky caliper", None),
        ("oil leak", "Valve cover gasket", None),
    ]
    suggestions = rank_common_problems("brake noise", history)

    assert [item["title"] for item in suggestions] == ["Worn pads", "Sticky caliper"]
    assert suggestions[0]["confidence"] == pytest.approx(0.3)
    assert suggestions[1]["confidence"] == pytest.approx(0.2)
    assert all(item["why"] == "Based on similar past repairs at this shop." for item in suggestions)


def test_common_problems_fall_back_to_correction():
    suggestions = rank_common_problems("squeal", [("belt squeal on startup", None, "Replaced serpentine belt")])
    assert suggestions[0]["title"] == "Replaced serpentine belt"
