from __future__ import annotations

"""Metadata filter evaluation and Milvus translation tests."""

from clone_recall.vectorstore.filters import And, Eq, Or, Range, all_of, any_of, matches, to_milvus_expr


def test_all_of_drops_none_and_unwraps_single_clause() -> None:
    clause = Eq("app_id", "1")

    assert all_of(None, None) is None
    assert all_of(clause, None) == clause
    assert all_of(clause, Eq("user_id", "u")) == And((clause, Eq("user_id", "u")))
    assert any_of() is None


def test_eq_matches_strings_and_coerces_mixed_types() -> None:
    assert matches(Eq("app_id", "12"), {"app_id": "12"})
    assert matches(Eq("app_id", "12"), {"app_id": 12})
    assert not matches(Eq("app_id", "12"), {"app_id": "13"})
    assert not matches(Eq("app_id", "12"), {})


def test_range_compares_iso_timestamps() -> None:
    window = Range("created_at", gte="2026-01-01T00:00:00+00:00", lte="2026-01-31T23:59:59+00:00")

    assert matches(window, {"created_at": "2026-01-15T12:00:00+00:00"})
    assert not matches(window, {"created_at": "2025-12-31T23:00:00+00:00"})
    assert not matches(window, {"created_at": 5})
    assert not matches(window, {})


def test_nested_and_or() -> None:
    expression = all_of(Eq("user_id", "u1"), any_of(Eq("source", "x"), Eq("source", "y")))

    assert matches(expression, {"user_id": "u1", "source": "y"})
    assert not matches(expression, {"user_id": "u1", "source": "z"})
    assert not matches(expression, {"user_id": "u2", "source": "x"})
    assert matches(None, {"anything": 1})


def test_milvus_expression_rendering() -> None:
    expression = And((Eq("app_id", "7"), Or((Eq("source", "x"), Eq("source", "y"))), Range("created_at", gte="2026")))

    rendered = to_milvus_expr(expression)

    assert rendered == (
        '(metadata["app_id"] == "7") and '
        '((metadata["source"] == "x") or (metadata["source"] == "y")) and '
        '(metadata["created_at"] >= "2026")'
    )
    assert to_milvus_expr(None) == ""
    assert to_milvus_expr(Eq("count", 3)) == 'metadata["count"] == 3'
    assert to_milvus_expr(Eq("flag", True)) == 'metadata["flag"] == true'
