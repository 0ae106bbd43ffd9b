"""Async HTTP client for the CloudStack API.

Requests are signed the way CloudStack expects: parameters sorted by key,
URL-encoded, lower-cased, HMAC-SHA1 with the secret key, base64. Commands
that CloudStack runs asynchronously (deploy, destroy) are awaited with
``wait_for_async_job`` before returning.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from collections.abc import Iterator, Mapping
from typing import Any
from urllib.parse import quote

from loguru import logger

from karpenter_cloudstack.cloudstack.api import (
    AsyncJobResult,
    CreateTagsParams,
    DeleteTagsParams,
    DeployVirtualMachineParams,
    DeployVirtualMachineResponse,
    DestroyVirtualMachineParams,
    DiskOfferingRecord,
    ListDiskOfferingsParams,
    ListNetworksParams,
    ListServiceOfferingsParams,
    ListTagsParams,
    ListTemplatesParams,
    ListVirtualMachinesParams,
    ListVirtualMachinesResponse,
    ListZonesParams,
    NetworkRecord,
    Nic,
    ResourceTag,
    ServiceOfferingRecord,
    TemplateRecord,
    VirtualMachine,
    ZoneRecord,
)
from karpenter_cloudstack.cloudstack.jobs import wait_for_async_job
from karpenter_cloudstack.config import Options
from karpenter_cloudstack.constants import JobStatus
from karpenter_cloudstack.errors import (
    BackendError,
    CloudStackAPIError,
    NotFoundError,
    OptionsError,
)
from karpenter_cloudstack.infra.http import HttpClient, HttpError

PAGE_SIZE = 500

_JOB_STATUS = {0: JobStatus.PENDING, 1: JobStatus.SUCCESS, 2: JobStatus.FAILED}


# =============================================================================
# Signing
# =============================================================================


def _encode(value: str) -> str:
    return quote(value, safe="*")


def sign(params: Mapping[str, str], secret_key: str) -> str:
    """Compute the CloudStack request signature for ``params``."""
    query = "&".join(
        f"{key}={_encode(params[key])}" for key in sorted(params, key=str.lower)
    )
    digest = hmac.new(secret_key.encode(), query.lower().encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


def _flatten_tags(prefix: str, tags: Mapping[str, str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for i, (key, value) in enumerate(sorted(tags.items())):
        out[f"{prefix}[{i}].key"] = key
        out[f"{prefix}[{i}].value"] = value
    return out


def _compact(params: Mapping[str, Any]) -> dict[str, str]:
    out: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            out[key] = "true" if value else "false"
        else:
            out[key] = str(value)
    return out


# =============================================================================
# Response Parsing
# =============================================================================


def _parse_zone(raw: Mapping[str, Any]) -> ZoneRecord:
    return ZoneRecord(
        id=raw["id"],
        name=raw.get("name", ""),
        network_type=raw.get("networktype", ""),
        allocation_state=raw.get("allocationstate", ""),
        local_storage_enabled=bool(raw.get("localstorageenabled", False)),
        security_groups_enabled=bool(raw.get("securitygroupsenabled", False)),
    )


def _parse_network(raw: Mapping[str, Any]) -> NetworkRecord:
    return NetworkRecord(
        id=raw["id"],
        name=raw.get("name", ""),
        zone_name=raw.get("zonename", ""),
        zone_id=raw.get("zoneid", ""),
        type=raw.get("type", ""),
        state=raw.get("state", ""),
        cidr=raw.get("cidr", ""),
        gateway=raw.get("gateway", ""),
    )


def _parse_template(raw: Mapping[str, Any]) -> TemplateRecord:
    return TemplateRecord(
        id=raw["id"],
        name=raw.get("name", ""),
        display_text=raw.get("displaytext", ""),
        zone_name=raw.get("zonename", ""),
        zone_id=raw.get("zoneid", ""),
        os_type_id=raw.get("ostypeid", ""),
        os_type_name=raw.get("ostypename", ""),
        status=raw.get("status", ""),
        is_ready=bool(raw.get("isready", False)),
        is_public=bool(raw.get("ispublic", False)),
        is_featured=bool(raw.get("isfeatured", False)),
    )


def _parse_service_offering(raw: Mapping[str, Any]) -> ServiceOfferingRecord:
    return ServiceOfferingRecord(
        id=raw["id"],
        name=raw.get("name", ""),
        cpu_number=int(raw.get("cpunumber", 0)),
        cpu_speed=int(raw.get("cpuspeed", 0)),
        memory=int(raw.get("memory", 0)),
        network_rate=int(raw.get("networkrate", 0)),
    )


def _parse_disk_offering(raw: Mapping[str, Any]) -> DiskOfferingRecord:
    return DiskOfferingRecord(
        id=raw["id"], name=raw.get("name", ""), disk_size=int(raw.get("disksize", 0))
    )


def _parse_vm(raw: Mapping[str, Any]) -> VirtualMachine:
    nics = tuple(
        Nic(network_id=n.get("networkid", ""), ip_address=n.get("ipaddress", ""))
        for n in raw.get("nic", [])
    )
    return VirtualMachine(
        id=raw["id"],
        name=raw.get("name", ""),
        state=raw.get("state", ""),
        zone_id=raw.get("zoneid", ""),
        zone_name=raw.get("zonename", ""),
        service_offering_id=raw.get("serviceofferingid", ""),
        service_offering_name=raw.get("serviceofferingname", ""),
        template_id=raw.get("templateid", ""),
        template_name=raw.get("templatename", ""),
        nics=nics,
        created=raw.get("created", ""),
    )


def _parse_tag(raw: Mapping[str, Any]) -> ResourceTag:
    return ResourceTag(
        key=raw.get("key", ""),
        value=raw.get("value", ""),
        resource_id=raw.get("resourceid", ""),
        resource_type=raw.get("resourcetype", ""),
    )


def _api_error(command: str, err: HttpError) -> CloudStackAPIError:
    error_code: int | None = None
    message = err.body
    try:
        body = json.loads(err.body)
    except ValueError:
        body = None
    if isinstance(body, dict) and body:
        inner = next(iter(body.values()))
        if isinstance(inner, dict):
            error_code = inner.get("errorcode")
            message = inner.get("errortext", message)
    return CloudStackAPIError(command, err.status, error_code, message)


# =============================================================================
# Client
# =============================================================================


class CloudStackClient:
    """``InventoryClient`` implementation over the CloudStack HTTP API."""

    def __init__(self, options: Options, http: HttpClient | None = None) -> None:
        problems = [
            msg
            for value, msg in (
                (options.api_url, "CloudStack API URL is required"),
                (options.api_key, "CloudStack API key is required"),
                (options.secret_key, "CloudStack secret key is required"),
            )
            if not value
        ]
        if problems:
            raise OptionsError(problems)

        self._api_key = options.api_key
        self._secret_key = options.secret_key
        self._async_job_timeout = options.async_job_timeout
        self._http = http or HttpClient(
            options.api_url,
            timeout=options.request_timeout,
            verify_ssl=options.verify_ssl,
        )
        self._log = logger.bind(component="client")
        self._log.info(
            "CloudStack client initialized api_url={url} verify_ssl={verify} timeout={timeout}",
            url=options.api_url, verify=options.verify_ssl, timeout=options.request_timeout,
        )

    async def __aenter__(self) -> CloudStackClient:
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.close()

    # ─── Transport ───────────────────────────────────────────────────

    def _signed(self, command: str, params: Mapping[str, Any]) -> dict[str, str]:
        query = _compact(params)
        query.update(command=command, response="json", apikey=self._api_key)
        query["signature"] = sign(query, self._secret_key)
        return query

    async def _call(
        self, command: str, params: Mapping[str, Any] | None = None, *, post: bool = False
    ) -> dict[str, Any]:
        signed = self._signed(command, params or {})
        try:
            if post:
                body = await self._http.request("POST", data=signed)
            else:
                body = await self._http.request("GET", params=signed)
        except HttpError as e:
            raise _api_error(command, e) from e

        if not isinstance(body, dict):
            raise BackendError(command, f"unexpected response: {body!r}")
        return body.get(f"{command.lower()}response", {})

    async def _list(
        self, command: str, item_key: str, params: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            resp = await self._call(command, {**params, "page": page, "pagesize": PAGE_SIZE})
            batch = resp.get(item_key, [])
            items.extend(batch)
            if not batch or len(items) >= int(resp.get("count", 0)):
                return items
            page += 1

    async def _await_job(self, command: str, resp: Mapping[str, Any]) -> AsyncJobResult | None:
        job_id = resp.get("jobid")
        if not job_id:
            return None
        self._log.debug("Waiting for {command} job {job_id}", command=command, job_id=job_id)
        return await wait_for_async_job(self, job_id, self._async_job_timeout)

    # ─── Virtual Machines ────────────────────────────────────────────

    async def deploy_virtual_machine(
        self, params: DeployVirtualMachineParams
    ) -> DeployVirtualMachineResponse:
        query: dict[str, Any] = {
            "serviceofferingid": params.service_offering_id,
            "templateid": params.template_id,
            "zoneid": params.zone_id,
            "name": params.name,
            "displayname": params.display_name,
            "userdata": params.user_data,
            "rootdisksize": params.root_disk_size,
            "keypair": params.key_pair,
            "diskofferingid": params.disk_offering_id,
        }
        if params.network_ids:
            query["networkids"] = ",".join(params.network_ids)

        resp = await self._call("deployVirtualMachine", query, post=True)
        vm_id = resp.get("id")
        if not vm_id:
            raise BackendError("deployVirtualMachine", f"response has no VM id: {resp!r}")
        await self._await_job("deployVirtualMachine", resp)
        return DeployVirtualMachineResponse(id=vm_id, job_id=resp.get("jobid"))

    async def list_virtual_machines(
        self, params: ListVirtualMachinesParams
    ) -> ListVirtualMachinesResponse:
        raw = await self._list(
            "listVirtualMachines",
            "virtualmachine",
            {"id": params.id, "zoneid": params.zone_id, "listall": True},
        )
        vms = tuple(_parse_vm(r) for r in raw)
        return ListVirtualMachinesResponse(count=len(vms), virtual_machines=vms)

    async def destroy_virtual_machine(self, params: DestroyVirtualMachineParams) -> None:
        resp = await self._call(
            "destroyVirtualMachine", {"id": params.id, "expunge": params.expunge}
        )
        await self._await_job("destroyVirtualMachine", resp)

    # ─── Inventory ───────────────────────────────────────────────────

    async def list_service_offerings(
        self, params: ListServiceOfferingsParams
    ) -> list[ServiceOfferingRecord]:
        raw = await self._list(
            "listServiceOfferings", "serviceoffering", {"id": params.id, "name": params.name}
        )
        return [_parse_service_offering(r) for r in raw]

    async def list_templates(self, params: ListTemplatesParams) -> list[TemplateRecord]:
        raw = await self._list(
            "listTemplates",
            "template",
            {"templatefilter": params.template_filter, "zoneid": params.zone_id, "id": params.id},
        )
        return [_parse_template(r) for r in raw]

    async def list_networks(self, params: ListNetworksParams) -> list[NetworkRecord]:
        raw = await self._list(
            "listNetworks", "network", {"zoneid": params.zone_id, "id": params.id, "listall": True}
        )
        return [_parse_network(r) for r in raw]

    async def list_zones(self, params: ListZonesParams) -> list[ZoneRecord]:
        raw = await self._list(
            "listZones", "zone", {"available": params.available, "id": params.id, "name": params.name}
        )
        return [_parse_zone(r) for r in raw]

    async def list_disk_offerings(self, params: ListDiskOfferingsParams) -> list[DiskOfferingRecord]:
        raw = await self._list("listDiskOfferings", "diskoffering", {"name": params.name})
        return [_parse_disk_offering(r) for r in raw]

    # ─── Tags ────────────────────────────────────────────────────────

    async def create_tags(self, params: CreateTagsParams) -> None:
        resp = await self._call(
            "createTags",
            {
                "resourceids": ",".join(params.resource_ids),
                "resourcetype": params.resource_type,
                **_flatten_tags("tags", params.tags),
            },
        )
        await self._await_job("createTags", resp)

    async def list_tags(self, params: ListTagsParams) -> list[ResourceTag]:
        raw = await self._list(
            "listTags",
            "tag",
            {"resourceid": params.resource_id, "resourcetype": params.resource_type, "listall": True},
        )
        return [_parse_tag(r) for r in raw]

    async def delete_tags(self, params: DeleteTagsParams) -> None:
        resp = await self._call(
            "deleteTags",
            {
                "resourceids": ",".join(params.resource_ids),
                "resourcetype": params.resource_type,
                **_flatten_tags("tags", params.tags),
            },
        )
        await self._await_job("deleteTags", resp)

    # ─── Jobs & Lookups ──────────────────────────────────────────────

    async def query_async_job_result(self, job_id: str) -> AsyncJobResult:
        resp = await self._call("queryAsyncJobResult", {"jobid": job_id})
        status = _JOB_STATUS.get(int(resp.get("jobstatus", -1)))
        if status is None:
            raise BackendError(
                "queryAsyncJobResult",
                f"unknown job status {resp.get('jobstatus')!r} for job {job_id}",
            )
        result = resp.get("jobresult")
        error = None
        if status is JobStatus.FAILED and isinstance(result, dict):
            error = result.get("errortext")
        return AsyncJobResult(job_id=job_id, status=status, result=result, error=error)

    async def get_zone_id(self, name: str) -> str:
        zones = await self.list_zones(ListZonesParams(name=name))
        return _single_id("zone", name, ((z.id, z.name) for z in zones))

    async def get_service_offering_id(self, name: str) -> str:
        offerings = await self.list_service_offerings(ListServiceOfferingsParams(name=name))
        return _single_id("service offering", name, ((o.id, o.name) for o in offerings))


def _single_id(kind: str, name: str, candidates: Iterator[tuple[str, str]]) -> str:
    for item_id, item_name in candidates:
        if item_name == name:
            return item_id
    raise NotFoundError(f"{kind} {name} not found")
