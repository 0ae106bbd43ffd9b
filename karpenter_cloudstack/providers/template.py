"""Template listing and selector resolution.

Templates are gathered from the ``featured``, ``community`` and ``self``
filters. A filter that fails to list is skipped so one permission problem
does not hide every template.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from loguru import logger

from karpenter_cloudstack.api.nodeclass import SelectorTerm, TemplateSelectorTerm
from karpenter_cloudstack.cloudstack.api import InventoryClient, ListTemplatesParams, TemplateRecord
from karpenter_cloudstack.constants import TEMPLATE_FILTERS, TEMPLATE_READY_STATUS, ResourceType
from karpenter_cloudstack.errors import BackendError
from karpenter_cloudstack.infra.cache import TTLCache
from karpenter_cloudstack.providers.selectors import dedupe, fetch_tags, resolve_terms


@dataclass(frozen=True, slots=True)
class Template:
    id: str
    name: str
    display_text: str = ""
    zone: str = ""
    zone_id: str = ""
    os_type: str = ""
    os_type_name: str = ""
    status: str = ""
    is_ready: bool = False
    is_public: bool = False
    is_featured: bool = False
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def usable(self) -> bool:
        return self.is_ready and self.status == TEMPLATE_READY_STATUS

    @classmethod
    def from_record(cls, record: TemplateRecord, tags: dict[str, str]) -> Template:
        return cls(
            id=record.id,
            name=record.name,
            display_text=record.display_text,
            zone=record.zone_name,
            zone_id=record.zone_id,
            os_type=record.os_type_id,
            os_type_name=record.os_type_name,
            status=record.status,
            is_ready=record.is_ready,
            is_public=record.is_public,
            is_featured=record.is_featured,
            tags=tags,
        )


def _os_type_filter(term: SelectorTerm) -> Callable[[Template], bool] | None:
    os_type = getattr(term, "os_type", "")
    if not os_type:
        return None
    return lambda t: os_type in (t.os_type, t.os_type_name)


class TemplateProvider:
    def __init__(self, client: InventoryClient, cache: TTLCache) -> None:
        self._client = client
        self._cache = cache
        self._log = logger.bind(component="template")

    async def list(self, zone: str) -> tuple[Template, ...]:
        return await self._cache.get_or_fetch(("templates", zone), lambda: self._fetch(zone))

    async def _fetch(self, zone: str) -> tuple[Template, ...]:
        try:
            zone_id = await self._client.get_zone_id(zone)
        except BackendError as e:
            raise BackendError(f"getting zone ID for {zone}", e) from e

        records: list[TemplateRecord] = []
        for template_filter in TEMPLATE_FILTERS:
            try:
                records.extend(
                    await self._client.list_templates(
                        ListTemplatesParams(template_filter=template_filter, zone_id=zone_id)
                    )
                )
            except BackendError as e:
                self._log.warning(
                    "Failed to list templates filter={filter}: {error}",
                    filter=template_filter, error=e,
                )

        templates = tuple([
            Template.from_record(r, await fetch_tags(self._client, r.id, ResourceType.TEMPLATE))
            for r in dedupe(records)
        ])
        self._log.info("Listed templates zone={zone} count={count}", zone=zone, count=len(templates))
        return templates

    async def resolve(self, terms: Sequence[TemplateSelectorTerm], zone: str) -> list[Template]:
        """Templates selected by ``terms`` in ``zone`` that finished downloading.

        A term's ``os_type`` narrows the tag match; a term carrying only
        ``os_type`` selects every template of that OS type.

        Raises:
            NoSelectorMatchError: No ready template matched.
        """
        templates = await self.list(zone)
        resolved = resolve_terms(
            terms,
            templates,
            kind="template",
            zone=zone,
            usable=lambda t: t.usable,
            narrow_for=_os_type_filter,
        )
        self._log.info("Resolved templates zone={zone} count={count}", zone=zone, count=len(resolved))
        return resolved
