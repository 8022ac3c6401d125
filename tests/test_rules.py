from n8n_prompt_chains.translation.rules import (
    ALWAYS_PASS,
    SubstitutionTranspiler,
    js_string,
    translate_condition,
    translate_validation_rule,
)


def test_condition_rewrites_vocabulary():
    assert translate_condition('sentiment is "negative"') == 'input.sentiment === "negative"'
    assert translate_condition("urgency greater than 3") == "input.urgency > 3"
    assert translate_condition("urgency less than 2") == "input.urgency < 2"
    assert translate_condition('contains("refund")') == 'input.content.includes("refund")'


def test_condition_substitution_is_lexical():
    # Known limitation: no word boundaries, so "this" is rewritten too.
    assert translate_condition("this") == "th==="
    assert translate_condition("input.priority > 3") == "input.priority > 3"


def test_validation_rule_first_keyword_wins():
    assert translate_validation_rule("length > 0") == "input.content && input.content.length > 0"
    assert (
        translate_validation_rule('contains "order id"')
        == 'input.content && input.content.includes("order id")'
    )
    assert (
        translate_validation_rule("not empty")
        == "input.content && input.content.trim().length > 0"
    )
    # "length" is checked before "contains"
    assert translate_validation_rule('length and contains "x"').endswith("length > 0")


def test_unrecognized_rule_always_passes():
    assert translate_validation_rule("is polite") == ALWAYS_PASS


def test_custom_rewrites_replace_default_table():
    transpiler = SubstitutionTranspiler(rewrites=(("priority", "input.priority"),))
    assert transpiler.translate_condition("priority is 1") == "input.priority is 1"


def test_js_string_escapes_quotes():
    assert js_string('say "hi"') == '"say \\"hi\\""'
