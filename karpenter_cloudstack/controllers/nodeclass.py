"""NodeClass status reconciler.

One ``reconcile`` call validates the zone, resolves networks and templates
and records the outcome in the NodeClass status. Failures become a
``Ready=False`` condition with a requeue interval; they are never raised.
The periodic loop that calls ``reconcile`` lives with the orchestrator.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final

from loguru import logger

from karpenter_cloudstack.api.nodeclass import (
    CONDITION_READY,
    Condition,
    ConditionStatus,
    NodeClass,
    ResolvedNetwork,
    ResolvedTemplate,
)
from karpenter_cloudstack.errors import CloudStackProviderError
from karpenter_cloudstack.providers.network import NetworkProvider
from karpenter_cloudstack.providers.template import TemplateProvider
from karpenter_cloudstack.providers.zone import ZONE_VALIDATION_FAILED, ZoneProvider

NETWORK_RESOLUTION_FAILED: Final = "NetworkResolutionFailed"
TEMPLATE_RESOLUTION_FAILED: Final = "TemplateResolutionFailed"

ZONE_FAILURE_REQUEUE: Final = 5 * 60.0
RESOLUTION_FAILURE_REQUEUE: Final = 60.0
READY_REQUEUE: Final = 15 * 60.0


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    requeue_after: float | None = None


class NodeClassReconciler:
    def __init__(
        self,
        zone_provider: ZoneProvider,
        network_provider: NetworkProvider,
        template_provider: TemplateProvider,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._zones = zone_provider
        self._networks = network_provider
        self._templates = template_provider
        self._clock = clock
        self._log = logger.bind(component="nodeclass")

    def _set_ready(
        self, nodeclass: NodeClass, status: ConditionStatus, reason: str, message: str
    ) -> None:
        previous = nodeclass.get_condition(CONDITION_READY)
        transitioned = previous is None or previous.status != status
        nodeclass.set_condition(
            Condition(
                type=CONDITION_READY,
                status=status,
                reason=reason,
                message=message,
                last_transition_time=(
                    self._clock() if transitioned else previous.last_transition_time
                ),
                observed_generation=nodeclass.generation,
            )
        )

    async def reconcile(self, nodeclass: NodeClass) -> ReconcileResult:
        log = self._log.bind(nodeclass=nodeclass.name)
        if nodeclass.deleting:
            return ReconcileResult()

        spec = nodeclass.spec
        try:
            await self._zones.validate_zone(spec.zone)
        except CloudStackProviderError as e:
            log.warning("Zone validation failed for {zone}: {error}", zone=spec.zone, error=e)
            self._set_ready(
                nodeclass, "False", ZONE_VALIDATION_FAILED, f"Zone validation failed: {e}"
            )
            return ReconcileResult(requeue_after=ZONE_FAILURE_REQUEUE)

        try:
            networks = await self._networks.resolve(spec.network_selector_terms, spec.zone)
        except CloudStackProviderError as e:
            log.warning("Network resolution failed: {error}", error=e)
            self._set_ready(
                nodeclass, "False", NETWORK_RESOLUTION_FAILED, f"Network resolution failed: {e}"
            )
            return ReconcileResult(requeue_after=RESOLUTION_FAILURE_REQUEUE)

        try:
            templates = await self._templates.resolve(spec.template_selector_terms, spec.zone)
        except CloudStackProviderError as e:
            log.warning("Template resolution failed: {error}", error=e)
            self._set_ready(
                nodeclass, "False", TEMPLATE_RESOLUTION_FAILED, f"Template resolution failed: {e}"
            )
            return ReconcileResult(requeue_after=RESOLUTION_FAILURE_REQUEUE)

        nodeclass.status.networks = tuple(
            ResolvedNetwork(id=n.id, name=n.name, zone=n.zone, type=n.type) for n in networks
        )
        nodeclass.status.templates = tuple(
            ResolvedTemplate(id=t.id, name=t.name, zone=t.zone, os_type=t.os_type_name)
            for t in templates
        )
        self._set_ready(nodeclass, "True", "Ready", "NodeClass is ready")

        log.info(
            "Reconciled NodeClass networks={networks} templates={templates}",
            networks=len(networks), templates=len(templates),
        )
        return ReconcileResult(requeue_after=READY_REQUEUE)
