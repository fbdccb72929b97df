"""Tests for the condition DSL translator."""

import pytest

from viewgraph.core.condition import (
    BoolOp,
    Comparison,
    ConditionTranslator,
    Group,
    Null,
    translate_condition,
)
from viewgraph.core.errors import ConditionSyntaxError


@pytest.fixture
def translator():
    return ConditionTranslator()


def test_null_or_today_prefixes_once(translator):
    sql = translator.translate("exit_date=null OR exit_date>TODAY", "src")
    assert sql == "(src.exit_date IS NULL OR src.exit_date > date('now'))"
    assert "src.src." not in sql


def test_not_equal_null(translator):
    assert translator.translate("end_date!=null", "_br") == "(_br.end_date IS NOT NULL)"
    assert translator.translate("end_date <> null", "_br") == "(_br.end_date IS NOT NULL)"


def test_is_null_form(translator):
    assert translator.translate("end_date IS NULL", "x") == "(x.end_date IS NULL)"
    assert translator.translate("end_date is not null", "x") == "(x.end_date IS NOT NULL)"


def test_custom_today_sql():
    translator = ConditionTranslator(today_sql="'2024-01-15'")
    assert translator.translate("start_date<=TODAY", "src") == "(src.start_date <= '2024-01-15')"


def test_literals(translator):
    assert translator.translate("status=active", "b") == "(b.status = 'active')"
    assert translator.translate("status='on hold'", "b") == "(b.status = 'on hold')"
    assert translator.translate("cycles>=1000", "b") == "(b.cycles >= 1000)"
    assert translator.translate("ratio<0.5", "b") == "(b.ratio < 0.5)"
    assert translator.translate("start>=2024-01-01", "b") == "(b.start >= '2024-01-01')"
    assert translator.translate("spare=true", "b") == "(b.spare = 1)"


def test_quotes_are_escaped(translator):
    assert translator.translate("name='O''Brien'", "b") == "(b.name = 'O''Brien')"


def test_qualified_names_not_prefixed(translator):
    sql = translator.translate("src.entry_date<=b.exit_date", "src")
    assert sql == "(src.entry_date <= b.exit_date)"


def test_keywords_not_prefixed(translator):
    sql = translator.translate("a=1 AND b=null OR c=TODAY", "t")
    assert sql == "(t.a = 1 AND t.b IS NULL OR t.c = date('now'))"


def test_explicit_grouping_kept(translator):
    sql = translator.translate(
        "(entry_date=null OR entry_date<=TODAY) AND (exit_date=null OR exit_date>TODAY)",
        "src",
    )
    assert sql == (
        "((src.entry_date IS NULL OR src.entry_date <= date('now')) "
        "AND (src.exit_date IS NULL OR src.exit_date > date('now')))"
    )


def test_parse_tree_is_left_nested(translator):
    tree = translator.parse("a=1 OR b=2 AND c=null")
    assert isinstance(tree, BoolOp)
    assert tree.op == "AND"
    assert isinstance(tree.left, BoolOp) and tree.left.op == "OR"
    assert isinstance(tree.right, Comparison)
    assert tree.right.op == "IS" and isinstance(tree.right.right, Null)


def test_parse_group(translator):
    tree = translator.parse("(a=1)")
    assert isinstance(tree, Group)


def test_no_alias_leaves_fields_bare(translator):
    assert translator.translate("end_date=null") == "(end_date IS NULL)"


def test_resolver_maps_display_names(translator):
    names = {"ended": "end_date"}
    sql = translator.translate("ended=null", "_br", resolve=lambda n: names.get(n, n))
    assert sql == "(_br.end_date IS NULL)"


def test_translate_condition_wrapper():
    assert translate_condition("x=1", "t", today_sql="CURRENT_DATE") == "(t.x = 1)"
    assert translate_condition("x<TODAY", "t", today_sql="CURRENT_DATE") == "(t.x < CURRENT_DATE)"


@pytest.mark.parametrize("condition", [
    "",
    "exit_date=",
    "exit_date>null",
    "= 1",
    "(a=1",
    "a=1)",
    "a=1 AND",
    "a IS 5",
    "a=1 b=2",
    "a ~ 1",
])
def test_malformed_conditions_raise(translator, condition):
    with pytest.raises(ConditionSyntaxError):
        translator.parse(condition)


def test_error_carries_position(translator):
    with pytest.raises(ConditionSyntaxError) as exc_info:
        translator.parse("a ~ 1")
    assert exc_info.value.position == 2
    assert exc_info.value.condition == "a ~ 1"
