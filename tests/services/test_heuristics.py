import pytest

from chat_escrow.core.settings import Settings
from chat_escrow.services.heuristics import (
    HeuristicConfig,
    HeuristicReason,
    contains_trigger,
    evaluate,
    parse_list_value,
)

ENABLED = HeuristicConfig(enabled=True)


def test_disabled_config_always_reviews():
    decision = evaluate("ok", False, HeuristicConfig(enabled=False))

    assert decision.needs_review is True
    assert decision.reason is HeuristicReason.DISABLED


@pytest.mark.parametrize(
    ("text", "has_media", "needs_review", "reason"),
    [
        ("ok", False, False, HeuristicReason.WHITELIST),
        ("OK!!", False, False, HeuristicReason.WHITELIST),
        ("Good   Night", False, False, HeuristicReason.WHITELIST),
        ("see u", False, False, HeuristicReason.SHORT_TEXT),
        ("!!! ???", False, False, HeuristicReason.LOW_SIGNAL),
        ("", False, False, HeuristicReason.NO_CONTENT),
        (None, False, False, HeuristicReason.NO_CONTENT),
        ("Can we talk about what happened yesterday?", False, True, HeuristicReason.DEFAULT),
        ("ok", True, True, HeuristicReason.DEFAULT),
        (None, True, True, HeuristicReason.DEFAULT),
    ],
)
def test_evaluate_rules(text, has_media, needs_review, reason):
    decision = evaluate(text, has_media, ENABLED)

    assert decision.needs_review is needs_review
    assert decision.reason is reason


def test_keyword_trigger_overrides_short_text_skip():
    decision = evaluate("knife", False, ENABLED)

    assert decision.needs_review is True
    assert decision.reason is HeuristicReason.KEYWORD_TRIGGER


def test_keyword_trigger_overrides_media_skip():
    config = HeuristicConfig(enabled=True, skip_media_without_text=True)

    assert evaluate("gun", True, config).reason is HeuristicReason.KEYWORD_TRIGGER
    assert evaluate(None, True, config).reason is HeuristicReason.MEDIA_WITHOUT_TEXT


def test_trigger_match_is_anchored_at_word_start():
    triggers = frozenset({"gun", "kill you", "stab"})

    assert contains_trigger("I have a GUN", triggers)
    assert contains_trigger("i will kill you.", triggers)
    assert contains_trigger("guns", triggers)
    assert contains_trigger("he got stabbed", triggers)
    assert not contains_trigger("it has begun", triggers)
    assert not contains_trigger("skill yourself up", triggers)


def test_no_alnum_rule_can_be_turned_off():
    config = HeuristicConfig(enabled=True, skip_if_no_alnum=False)

    decision = evaluate("?!", False, config)

    assert decision.reason is HeuristicReason.SHORT_TEXT


def test_whitelist_ignored_for_long_text():
    config = HeuristicConfig(
        enabled=True,
        min_text_length=5,
        whitelist_max_length=10,
        whitelist=frozenset({"this phrase is long enough"}),
    )

    decision = evaluate("this phrase is long enough", False, config)

    assert decision.needs_review is True


def test_parse_list_value():
    assert parse_list_value(" a, b\nc ,,\n") == ["a", "b", "c"]
    assert parse_list_value(None) == []


def test_config_from_settings_merges_custom_lists():
    config = HeuristicConfig.from_settings(
        Settings(
            SECRET_KEY="test",
            HEURISTICS_ENABLED="true",
            HEURISTIC_WHITELIST="Sounds Good, cya",
            HEURISTIC_KEYWORD_TRIGGERS="blackmail",
            HEURISTIC_USE_DEFAULT_KEYWORDS="false",
        )
    )

    assert config.enabled is True
    assert {"sounds good", "cya", "ok"} <= config.whitelist
    assert config.keyword_triggers == frozenset({"blackmail"})


@pytest.mark.parametrize("text", ["stabbed", "guns", "suicidal", "overdosed", "shooting u"])
def test_inflected_trigger_in_short_text_is_reviewed(text):
    decision = evaluate(text, False, ENABLED)

    assert decision.needs_review is True
    assert decision.reason is HeuristicReason.KEYWORD_TRIGGER
