"""
Tests for the tag filter — parsing and matching.
"""

import pytest

from terrastack.core.engine.tags import (
    Operation,
    TagClause,
    match_tags,
    parse_tag_expression,
    parse_tag_filters,
    validate_tag,
)
from terrastack.core.errors import TagFilterError


class TestValidateTag:
    @pytest.mark.parametrize("tag", ["a", "prod", "team-a", "net_1", "z9"])
    def test_valid(self, tag):
        validate_tag(tag)

    @pytest.mark.parametrize("tag", ["", "A", "1abc", "-x", "~prod", "a b", "a:b", "a.b"])
    def test_invalid(self, tag):
        with pytest.raises(TagFilterError):
            validate_tag(tag)


class TestParse:
    def test_single_tag_is_leaf(self):
        clause = parse_tag_expression("prod")
        assert clause == TagClause(op=Operation.EQ, tag="prod")

    def test_comma_is_and(self):
        clause = parse_tag_expression("prod,network")
        assert clause.op is Operation.AND
        assert [c.tag for c in clause.children] == ["prod", "network"]

    def test_no_filters(self):
        assert parse_tag_filters() is None
        assert parse_tag_filters([], []) is None

    def test_repeated_tags_are_or(self):
        clause = parse_tag_filters(["a", "b"])
        assert clause.op is Operation.OR
        assert len(clause.children) == 2

    def test_no_tags_become_negations(self):
        clause = parse_tag_filters(["a"], ["b,c"])
        assert clause.op is Operation.AND
        assert [str(c) for c in clause.children] == ["a", "~b", "~c"]

    def test_negation_prefix_rejected(self):
        with pytest.raises(TagFilterError):
            parse_tag_filters(["~prod"])
        with pytest.raises(TagFilterError):
            parse_tag_filters([], ["~prod"])

    def test_empty_member_rejected(self):
        with pytest.raises(TagFilterError):
            parse_tag_filters(["a,,b"])


class TestMatch:
    def test_none_matches_everything(self):
        assert match_tags(None, [])
        assert match_tags(None, ["x"])

    def test_and_within_value(self):
        clause = parse_tag_filters(["a,b"])
        assert match_tags(clause, ["a", "b"])
        assert match_tags(clause, ["a", "b", "c"])
        assert not match_tags(clause, ["a"])

    def test_or_across_values(self):
        clause = parse_tag_filters(["a", "b"])
        assert match_tags(clause, ["a"])
        assert match_tags(clause, ["b"])
        assert not match_tags(clause, ["c"])

    def test_no_tags(self):
        clause = parse_tag_filters([], ["b"])
        assert match_tags(clause, ["a"])
        assert match_tags(clause, [])
        assert not match_tags(clause, ["a", "b"])

    def test_or_of_ands_with_exclusion(self):
        # (a AND b) OR c, and never d
        clause = parse_tag_filters(["a,b", "c"], ["d"])
        assert match_tags(clause, ["a", "b"])
        assert match_tags(clause, ["c"])
        assert not match_tags(clause, ["a"])
        assert not match_tags(clause, ["c", "d"])
        assert not match_tags(clause, ["a", "b", "d"])
