import pytest

from agents.skill_index import (
    Skill,
    best_match,
    fuzzy_match,
    has_fuzzy,
    missing,
    normalize,
    normalize_all,
    union,
)


def test_normalize_casefolds_and_collapses_whitespace():
    skill = normalize("  Machine   Learning ", category="concept")
    assert skill.token == "machine learning"
    assert skill == Skill("machine learning")
    assert hash(skill) == hash(Skill("machine learning", "technical"))


def test_unknown_category_rejected():
    with pytest.raises(ValueError):
        Skill("python", "magic")


def test_normalize_all_dedupes_in_order_and_drops_empties():
    assert normalize_all(["React", "react ", "", "  ", "SQL"]) == ["react", "sql"]


def test_union_preserves_first_seen_order():
    assert union(["Go", "python"], ["PYTHON", "rust"]) == ["go", "python", "rust"]


def test_fuzzy_containment_both_directions():
    assert fuzzy_match("react.js", "React")
    assert fuzzy_match("react", "react.js")
    assert not fuzzy_match("", "react")
    assert not fuzzy_match("vue", "react")


def test_has_fuzzy_and_best_match_prefers_longer():
    pool = ["java", "javascript", "sql"]
    assert has_fuzzy(pool, "JavaScript developer")
    assert best_match(pool, "javascript developer") == "javascript"
    assert best_match(pool, "haskell") is None


def test_missing_uses_fuzzy_matching():
    assert missing(["hashmap", "o(n)"], ["HashMap", "o(n) lookups"]) == []
    assert missing(["indexing", "query-plan"], ["caching"]) == ["indexing", "query-plan"]
