from __future__ import annotations

from postfold.grouping import FilterSettings, filter_items


def _items(item_factory):
    return [
        item_factory("1", "Selling a bike, cheap"),
        item_factory("2", "Bike for sale, SPAM link", author="spammer"),
        item_factory("3", "Looking for a flat", author="Bike Shop"),
        item_factory("4", "Lost keys"),
    ]


def test_empty_settings_keep_everything(item_factory) -> None:
    assert len(filter_items(_items(item_factory), FilterSettings())) == 4


def test_positive_keywords_match_any_field(item_factory) -> None:
    kept = filter_items(_items(item_factory), FilterSettings(positive_keywords=["bike", "keys"]))
    assert [i.id for i in kept] == ["1", "2", "3", "4"]

    kept = filter_items(
        _items(item_factory),
        FilterSettings(positive_keywords=["bike"], search_fields=["content"]),
    )
    assert [i.id for i in kept] == ["1", "2"]


def test_negative_keywords_take_precedence(item_factory) -> None:
    kept = filter_items(
        _items(item_factory),
        FilterSettings(positive_keywords=["bike"], negative_keywords=["spam"]),
    )
    assert [i.id for i in kept] == ["1", "3"]


def test_case_sensitive_matching(item_factory) -> None:
    kept = filter_items(
        _items(item_factory),
        FilterSettings(positive_keywords=["Bike"], case_sensitive=True),
    )
    assert [i.id for i in kept] == ["2", "3"]
