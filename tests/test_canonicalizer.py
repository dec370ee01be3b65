"""Tests for canonicalizer: merging, canonical printing and hashing."""

import hashlib

import pytest
from graphql import GraphQLSyntaxError

from canonicalizer import (
    canonicalize,
    canonicalize_text,
    hash_query,
    merge_query,
    persist,
)
from extractor import OperationRecord
from indexer import UnresolvedFragmentError


def make_record(name, text, depends_on=()):
    return OperationRecord(
        name=name, source_text=text, span=(0, 1), depends_on=frozenset(depends_on)
    )


def test_anonymous_query_keeps_query_keyword():
    assert canonicalize_text("query { user { name } }") == "query { user { name } }"
    assert canonicalize_text("{ user { name } }") == "query { user { name } }"


def test_whitespace_differences_canonicalize_identically():
    compact = "query GetUser($id: ID!) { user(id: $id) { id name } }"
    spread_out = """
        query GetUser(
            $id: ID!
        ) {
            user(id: $id) {
                id
                name
            }
        }
    """
    assert canonicalize_text(compact) == canonicalize_text(spread_out)
    assert canonicalize_text(compact) == "query GetUser($id: ID!) { user(id: $id) { id name } }"


def test_field_and_argument_order_is_normalized():
    first = "query Q($b: Int, $a: Int) { z y(second: 2, first: 1) { d c } }"
    second = "query Q($a: Int, $b: Int) { y(first: 1, second: 2) { c d } z }"

    assert canonicalize_text(first) == canonicalize_text(second)
    assert canonicalize_text(first) == (
        "query Q($a: Int, $b: Int) { y(first: 1, second: 2) { c d } z }"
    )


def test_mutation_field_order_is_preserved():
    assert canonicalize_text("mutation { b a }") == "mutation { b a }"
    assert canonicalize_text("mutation M { b(y: 1, x: 2) a }") == "mutation M { b(x: 2, y: 1) a }"


def test_mutation_order_is_preserved_at_every_depth():
    assert canonicalize_text("mutation { a { z y } }") == "mutation { a { z y } }"


def test_inline_fragments_sort_by_type_condition():
    text = "query { node { ... on B { x } ... on A { y } } }"
    assert canonicalize_text(text) == "query { node { ... on A { y } ... on B { x } } }"


def test_inline_fragments_with_the_same_condition_sort_by_selections():
    text = "query { node { ... on A { c a } ... on A { b a } } }"
    assert canonicalize_text(text) == "query { node { ... on A { a b } ... on A { a c } } }"


def test_field_sorts_before_fragment_spread_of_the_same_name():
    expected = "query { t { A ...A } }"
    assert canonicalize_text("query { t { ...A A } }") == expected
    assert canonicalize_text("query { t { A ...A } }") == expected


def test_directives_and_their_arguments_are_sorted():
    assert canonicalize_text("query { a @skip(if: $x) @include(if: $y) }") == (
        "query { a @include(if: $y) @skip(if: $x) }"
    )
    assert canonicalize_text("query { a @custom(b: 1, a: 2) }") == "query { a @custom(a: 2, b: 1) }"


def test_variable_directives_are_sorted():
    assert canonicalize_text("query Q($a: Int @z @y) { f }") == "query Q($a: Int @y @z) { f }"


def test_add_typename_to_nested_selection_sets():
    text = canonicalize_text("query { user { name } }", add_typename=True)
    assert text == "query { user { __typename name } }"


def test_add_typename_skips_sets_that_already_select_it():
    text = canonicalize_text("query { user { __typename name } }", add_typename=True)
    assert text == "query { user { __typename name } }"


def test_add_typename_applies_to_fragments():
    text = canonicalize_text("fragment F on User { id }", add_typename=True)
    assert text == "fragment F on User { __typename id }"


def test_merge_query_appends_each_fragment_once():
    registry = {
        "A": make_record("A", "fragment A on T { ...C }", ["C"]),
        "B": make_record("B", "fragment B on T { ...C }", ["C"]),
        "C": make_record("C", "fragment C on T { id }"),
    }
    query = make_record("Q", "query Q { t { ...A ...B } }", ["A", "B"])

    merged = merge_query(query, registry)

    assert merged.startswith("query Q { t { ...A ...B } }\n")
    assert merged.count("fragment C on T") == 1
    assert merged.count("fragment A on T") == 1
    assert merged.count("fragment B on T") == 1


def test_canonicalize_orders_operations_before_fragments():
    registry = {
        "UserFields": make_record("UserFields", "fragment UserFields on User { name id }"),
    }
    query = make_record("GetUser", "query GetUser { user { ...UserFields } }", ["UserFields"])

    assert canonicalize(query, registry) == (
        "query GetUser { user { ...UserFields } } fragment UserFields on User { id name }"
    )


def test_missing_fragment_raises():
    query = make_record("Q", "query Q { t { ...Gone } }", ["Gone"])

    with pytest.raises(UnresolvedFragmentError):
        merge_query(query, {})


def test_syntax_errors_propagate():
    with pytest.raises(GraphQLSyntaxError):
        canonicalize_text("query { user { name }")


def test_hash_query_is_sha256_hex():
    text = "query { user { name } }"
    assert hash_query(text) == hashlib.sha256(text.encode("utf-8")).hexdigest()


def test_persist_returns_hash_and_canonical_text():
    record = make_record("Q", "query   {  user { name }\n}")

    result = persist(record, {})

    assert result["query"] == "query { user { name } }"
    assert result["hash"] == hash_query("query { user { name } }")
    assert persist(make_record("Q", "{ user { name } }"), {}) == result
