import pytest

from gastutor_bot.content import EXACT_ANSWERS, TOPIC_RULES, UNITS, ContentCatalog, catalog, level_description
from gastutor_bot.models import Level, Unit, UnitLevel



def test_g3_units_are_strict_prefix_of_g2() -> None:
    g3 = [unit.number for unit in catalog.units_for_level(Level.G3)]
    g2 = [unit.number for unit in catalog.units_for_level(Level.G2)]
    assert g3 == list(range(1, 10))
    assert g2 == list(range(1, 25))
    assert len(g3) < len(g2)
    assert g2[: len(g3)] == g3


def test_units_are_sorted_by_number_even_if_declared_out_of_order() -> None:
    shuffled = ContentCatalog([UNITS[3], UNITS[0], UNITS[12], UNITS[1]])
    assert [unit.number for unit in shuffled.units_for_level(Level.G2)] == [1, 2, 4, 13]
    assert [unit.number for unit in shuffled.units_for_level(Level.G3)] == [1, 2, 4]


def test_g3_limit_caps_visible_units() -> None:
    small = ContentCatalog(UNITS, g3_limit=2)
    assert [unit.number for unit in small.units_for_level(Level.G3)] == [1, 2]


def test_duplicate_unit_numbers_rejected() -> None:
    with pytest.raises(ValueError, match="unique"):
        ContentCatalog([Unit(1, "A", UnitLevel.BOTH), Unit(1, "B", UnitLevel.G2)])


def test_static_tables_use_lowercase_keys_and_known_units() -> None:
    numbers = {unit.number for unit in UNITS}
    for rule in TOPIC_RULES:
        assert rule.keyword == rule.keyword.lower()
        assert set(rule.units) <= numbers
    for answer in EXACT_ANSWERS:
        assert answer.trigger == answer.trigger.lower()
        assert answer.body


def test_level_description_mentions_units() -> None:
    assert "Units 1-9" in level_description(Level.G3)
    assert "Units 1-24" in level_description(Level.G2)
