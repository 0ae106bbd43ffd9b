from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from karpenter_cloudstack.api.nodeclass import SelectorTerm
from karpenter_cloudstack.errors import NoSelectorMatchError
from karpenter_cloudstack.providers.selectors import dedupe, match_term, matches_tags, resolve_terms

pytestmark = [pytest.mark.unit]


@dataclass(frozen=True)
class Res:
    id: str
    name: str
    tags: dict[str, str] = field(default_factory=dict)
    ok: bool = True


CANDIDATES = [
    Res("a", "alpha", {"env": "prod", "tier": "web"}),
    Res("b", "beta", {"env": "dev"}),
    Res("c", "gamma", {"env": "prod"}),
    Res("d", "delta", {"tier": "web"}),
]


def ids(resources) -> list[str]:
    return [r.id for r in resources]


class TestMatchesTags:
    def test_exact_match(self):
        assert matches_tags({"env": "prod"}, {"env": "prod"})

    def test_value_mismatch(self):
        assert not matches_tags({"env": "dev"}, {"env": "prod"})

    def test_all_keys_required(self):
        assert not matches_tags({"env": "prod"}, {"env": "prod", "tier": "web"})

    def test_wildcard_accepts_any_value(self):
        assert matches_tags({"env": "anything"}, {"env": "*"})

    def test_wildcard_requires_key(self):
        assert not matches_tags({"tier": "web"}, {"env": "*"})

    def test_extra_resource_tags_ignored(self):
        assert matches_tags({"env": "prod", "team": "x"}, {"env": "prod"})


class TestMatchTerm:
    def test_id_wins_over_name(self):
        term = SelectorTerm(id="a", name="beta")
        assert ids(match_term(term, CANDIDATES)) == ["a"]

    def test_id_match_ignores_tags(self):
        term = SelectorTerm(id="b", tags={"env": "prod"})
        assert ids(match_term(term, CANDIDATES)) == ["b"]

    def test_falls_back_to_name_when_id_missing(self):
        term = SelectorTerm(id="zzz", name="gamma")
        assert ids(match_term(term, CANDIDATES)) == ["c"]

    def test_falls_back_to_tags_when_name_missing(self):
        term = SelectorTerm(name="nobody", tags={"tier": "web"})
        assert ids(match_term(term, CANDIDATES)) == ["a", "d"]

    def test_tags_select_every_match(self):
        term = SelectorTerm(tags={"env": "prod"})
        assert ids(match_term(term, CANDIDATES)) == ["a", "c"]

    def test_empty_term_matches_nothing(self):
        assert match_term(SelectorTerm(), CANDIDATES) == []

    def test_narrow_limits_tag_branch(self):
        term = SelectorTerm(tags={"env": "prod"})
        assert ids(match_term(term, CANDIDATES, narrow=lambda r: r.id != "a")) == ["c"]

    def test_narrow_without_tags_selects_all_narrowed(self):
        result = match_term(SelectorTerm(), CANDIDATES, narrow=lambda r: r.id in {"b", "d"})
        assert ids(result) == ["b", "d"]


class TestResolveTerms:
    def test_union_of_terms_without_duplicates(self):
        terms = [
            SelectorTerm(tags={"env": "prod"}),
            SelectorTerm(name="alpha"),
            SelectorTerm(id="d"),
            SelectorTerm(tags={"tier": "web"}),
        ]
        result = resolve_terms(terms, CANDIDATES, kind="thing", zone="z")
        assert ids(result) == ["a", "c", "d"]

    def test_first_seen_order(self):
        terms = [SelectorTerm(id="d"), SelectorTerm(id="a"), SelectorTerm(id="d")]
        assert ids(resolve_terms(terms, CANDIDATES, kind="thing", zone="z")) == ["d", "a"]

    def test_wildcard_matches_every_resource_with_key(self):
        result = resolve_terms(
            [SelectorTerm(tags={"env": "*"})], CANDIDATES, kind="thing", zone="z"
        )
        assert ids(result) == ["a", "b", "c"]

    def test_usable_filter_applied_after_dedupe(self):
        candidates = [Res("a", "alpha", ok=False), Res("b", "beta")]
        terms = [SelectorTerm(id="a"), SelectorTerm(id="b")]
        result = resolve_terms(terms, candidates, kind="thing", zone="z", usable=lambda r: r.ok)
        assert ids(result) == ["b"]

    def test_no_match_raises(self):
        with pytest.raises(NoSelectorMatchError, match="no networks matched the selector terms in zone z1"):
            resolve_terms([SelectorTerm(name="missing")], CANDIDATES, kind="network", zone="z1")

    def test_empty_inventory_raises(self):
        with pytest.raises(NoSelectorMatchError):
            resolve_terms([SelectorTerm(tags={"env": "*"})], [], kind="network", zone="z1")

    def test_everything_filtered_out_raises(self):
        with pytest.raises(NoSelectorMatchError):
            resolve_terms(
                [SelectorTerm(id="a")], CANDIDATES, kind="thing", zone="z", usable=lambda r: False
            )

    def test_no_terms_raises(self):
        with pytest.raises(NoSelectorMatchError):
            resolve_terms([], CANDIDATES, kind="thing", zone="z")


class TestDedupe:
    def test_keeps_first_occurrence(self):
        first = Res("a", "first")
        second = Res("a", "second")
        assert dedupe([first, Res("b", "b"), second]) == [first, Res("b", "b")]
