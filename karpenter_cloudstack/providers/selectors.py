"""Selector-term resolution shared by the network, template and offering providers.

A list of terms is ORed. Within a term the ID is tried first, then the
name, then the tags; only the tag branch can add more than one resource.
The accumulated selection is deduplicated by ID, keeping first-seen order,
before the kind-specific readiness filter runs.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Protocol

from loguru import logger

from karpenter_cloudstack.api.nodeclass import SelectorTerm
from karpenter_cloudstack.cloudstack.api import InventoryClient, ListTagsParams, tags_to_dict
from karpenter_cloudstack.errors import CloudStackProviderError, NoSelectorMatchError

WILDCARD = "*"


class Identified(Protocol):
    @property
    def id(self) -> str: ...


class Selectable(Identified, Protocol):
    @property
    def name(self) -> str: ...

    @property
    def tags(self) -> Mapping[str, str]: ...


def matches_tags(resource_tags: Mapping[str, str], selector_tags: Mapping[str, str]) -> bool:
    """Every selector key must be present; ``"*"`` accepts any value."""
    for key, value in selector_tags.items():
        if key not in resource_tags:
            return False
        if value != WILDCARD and resource_tags[key] != value:
            return False
    return True


def match_term[R: Selectable](
    term: SelectorTerm,
    candidates: Sequence[R],
    narrow: Callable[[R], bool] | None = None,
) -> list[R]:
    """Resources selected by a single term.

    ``narrow`` restricts the candidates considered by the tag branch. When
    it is given and the term has no tags, every narrowed candidate matches.
    """
    if term.id:
        for r in candidates:
            if r.id == term.id:
                return [r]
    if term.name:
        for r in candidates:
            if r.name == term.name:
                return [r]

    pool = [r for r in candidates if narrow(r)] if narrow is not None else list(candidates)
    if term.tags:
        return [r for r in pool if matches_tags(r.tags, term.tags)]
    if narrow is not None:
        return pool
    return []


def dedupe[R: Identified](resources: Iterable[R]) -> list[R]:
    seen: set[str] = set()
    unique: list[R] = []
    for r in resources:
        if r.id not in seen:
            seen.add(r.id)
            unique.append(r)
    return unique


def resolve_terms[R: Selectable](
    terms: Iterable[SelectorTerm],
    candidates: Sequence[R],
    *,
    kind: str,
    zone: str,
    usable: Callable[[R], bool] | None = None,
    narrow_for: Callable[[SelectorTerm], Callable[[R], bool] | None] | None = None,
) -> list[R]:
    """Resolve ``terms`` against ``candidates``.

    Raises:
        NoSelectorMatchError: Nothing survived matching and filtering.
    """
    selected: list[R] = []
    for term in terms:
        narrow = narrow_for(term) if narrow_for is not None else None
        selected.extend(match_term(term, candidates, narrow))

    result = dedupe(selected)
    if usable is not None:
        result = [r for r in result if usable(r)]
    if not result:
        raise NoSelectorMatchError(kind, zone)
    return result


async def fetch_tags(client: InventoryClient, resource_id: str, resource_type: str) -> dict[str, str]:
    """Tags of one resource, or an empty mapping when the lookup fails."""
    try:
        tags = await client.list_tags(
            ListTagsParams(resource_id=resource_id, resource_type=resource_type)
        )
    except CloudStackProviderError as e:
        logger.bind(component="selectors").warning(
            "Failed to get tags for {resource_type} {resource_id}: {error}",
            resource_type=resource_type,
            resource_id=resource_id,
            error=e,
        )
        return {}
    return tags_to_dict(tags)
