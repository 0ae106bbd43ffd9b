from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Any

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from karpenter_cloudstack.cloudstack.api import (
    CreateTagsParams,
    DeployVirtualMachineParams,
    ListVirtualMachinesParams,
    ListZonesParams,
)
from karpenter_cloudstack.cloudstack.client import CloudStackClient, sign
from karpenter_cloudstack.config import Options
from karpenter_cloudstack.constants import JobStatus
from karpenter_cloudstack.errors import (
    AsyncJobFailedError,
    CloudStackAPIError,
    NotFoundError,
    OptionsError,
)

pytestmark = [pytest.mark.unit]

API_KEY = "test-key"
SECRET_KEY = "test-secret"


def expected_signature(query: str) -> str:
    digest = hmac.new(SECRET_KEY.encode(), query.lower().encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


class FakeCloudStack:
    """Serves a handful of CloudStack commands and records every request."""

    def __init__(self) -> None:
        self.url = ""
        self.requests: list[tuple[str, dict[str, str]]] = []
        self.zones: list[dict[str, Any]] = [
            {"id": "zone-1", "name": "zone-a", "networktype": "Advanced", "allocationstate": "Enabled"},
        ]
        self.vms: list[dict[str, Any]] = []
        self.job_status = 1
        self.job_result: dict[str, Any] = {}
        self.fail_with: tuple[int, dict[str, Any]] | None = None

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/client/api", self.handle)
        return app

    async def handle(self, request: web.Request) -> web.Response:
        if request.method == "POST":
            params = {k: str(v) for k, v in (await request.post()).items()}
        else:
            params = dict(request.query)
        self.requests.append((request.method, params))

        unsigned = {k: v for k, v in params.items() if k != "signature"}
        if params.get("apikey") != API_KEY or params.get("signature") != sign(unsigned, SECRET_KEY):
            return web.json_response({"errorresponse": {"errorcode": 401, "errortext": "bad signature"}}, status=401)
        if self.fail_with is not None:
            status, body = self.fail_with
            return web.json_response(body, status=status)

        command = params["command"]
        return web.json_response({f"{command.lower()}response": self.respond(command, params)})

    def respond(self, command: str, params: dict[str, str]) -> dict[str, Any]:
        match command:
            case "listZones":
                zones = [z for z in self.zones if "name" not in params or z["name"] == params["name"]]
                return {"count": len(zones), "zone": zones} if zones else {}
            case "listVirtualMachines":
                page = int(params["page"])
                batch = self.vms[(page - 1) * 2 : page * 2]
                return {"count": len(self.vms), "virtualmachine": batch}
            case "deployVirtualMachine":
                return {"id": "vm-1", "jobid": "job-1"}
            case "createTags":
                return {"jobid": "job-2"}
            case "queryAsyncJobResult":
                return {"jobid": params["jobid"], "jobstatus": self.job_status, "jobresult": self.job_result}
        return {}


@pytest.fixture
async def cloudstack():
    fake = FakeCloudStack()
    srv = TestServer(fake.app())
    await srv.start_server()
    fake.url = f"http://{srv.host}:{srv.port}/client/api"
    yield fake
    await srv.close()


@pytest.fixture
async def client(cloudstack: FakeCloudStack):
    options = Options(
        api_url=cloudstack.url,
        api_key=API_KEY,
        secret_key=SECRET_KEY,
        cluster_name="test",
        async_job_timeout=1.0,
    )
    async with CloudStackClient(options) as c:
        yield c


class TestSign:
    def test_matches_hand_built_hmac(self):
        params = {"command": "listZones", "response": "json", "apikey": API_KEY}
        assert sign(params, SECRET_KEY) == expected_signature(
            "apikey=test-key&command=listZones&response=json"
        )

    def test_values_are_percent_encoded(self):
        params = {"name": "a b/c", "apikey": API_KEY}
        assert sign(params, SECRET_KEY) == expected_signature("apikey=test-key&name=a%20b%2Fc")

    def test_keys_sorted_case_insensitively(self):
        params = {"zoneid": "z", "Name": "n", "apikey": API_KEY}
        assert sign(params, SECRET_KEY) == expected_signature("apikey=test-key&Name=n&zoneid=z")


class TestClientConstruction:
    def test_missing_credentials_reported_together(self):
        options = Options(api_url="", api_key="", secret_key="s", cluster_name="c")
        with pytest.raises(OptionsError) as exc_info:
            CloudStackClient(options)
        assert exc_info.value.problems == [
            "CloudStack API URL is required",
            "CloudStack API key is required",
        ]


class TestCommands:
    @pytest.mark.asyncio
    async def test_list_zones(self, client: CloudStackClient, cloudstack: FakeCloudStack):
        zones = await client.list_zones(ListZonesParams(available=True))

        assert [(z.id, z.name, z.allocation_state) for z in zones] == [("zone-1", "zone-a", "Enabled")]
        method, params = cloudstack.requests[0]
        assert method == "GET"
        assert params["command"] == "listZones"
        assert params["response"] == "json"
        assert params["available"] == "true"

    @pytest.mark.asyncio
    async def test_get_zone_id(self, client: CloudStackClient):
        assert await client.get_zone_id("zone-a") == "zone-1"
        with pytest.raises(NotFoundError, match="zone zone-z not found"):
            await client.get_zone_id("zone-z")

    @pytest.mark.asyncio
    async def test_list_follows_pages(self, client: CloudStackClient, cloudstack: FakeCloudStack):
        cloudstack.vms = [
            {"id": f"vm-{i}", "name": f"n{i}", "state": "Running", "nic": [{"networkid": "net-1", "ipaddress": f"10.0.0.{i}"}]}
            for i in range(3)
        ]

        resp = await client.list_virtual_machines(ListVirtualMachinesParams())

        assert resp.count == 3
        assert [vm.id for vm in resp.virtual_machines] == ["vm-0", "vm-1", "vm-2"]
        assert resp.virtual_machines[2].nics[0].ip_address == "10.0.0.2"
        assert [p["page"] for _, p in cloudstack.requests] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_api_error(self, client: CloudStackClient, cloudstack: FakeCloudStack):
        cloudstack.fail_with = (431, {"listzonesresponse": {"errorcode": 431, "errortext": "invalid parameter"}})

        with pytest.raises(CloudStackAPIError) as exc_info:
            await client.list_zones(ListZonesParams())

        err = exc_info.value
        assert err.status == 431
        assert err.error_code == 431
        assert err.message == "invalid parameter"
        assert str(err) == "listZones: HTTP 431 (errorcode 431): invalid parameter"

    @pytest.mark.asyncio
    async def test_deploy_posts_and_waits_for_job(
        self, client: CloudStackClient, cloudstack: FakeCloudStack
    ):
        resp = await client.deploy_virtual_machine(
            DeployVirtualMachineParams(
                service_offering_id="off-1",
                template_id="tmpl-1",
                zone_id="zone-1",
                network_ids=("net-1", "net-2"),
                name="karpenter-claim-1",
            )
        )

        assert resp.id == "vm-1"
        assert resp.job_id == "job-1"
        (deploy_method, deploy), (_, query) = cloudstack.requests
        assert deploy_method == "POST"
        assert deploy["networkids"] == "net-1,net-2"
        assert "userdata" not in deploy
        assert query["command"] == "queryAsyncJobResult"
        assert query["jobid"] == "job-1"

    @pytest.mark.asyncio
    async def test_failed_job_surfaces(self, client: CloudStackClient, cloudstack: FakeCloudStack):
        cloudstack.job_status = 2
        cloudstack.job_result = {"errorcode": 530, "errortext": "no capacity"}

        with pytest.raises(AsyncJobFailedError, match="no capacity"):
            await client.deploy_virtual_machine(
                DeployVirtualMachineParams(service_offering_id="o", template_id="t", zone_id="z")
            )

    @pytest.mark.asyncio
    async def test_query_job_result(self, client: CloudStackClient, cloudstack: FakeCloudStack):
        cloudstack.job_status = 0
        result = await client.query_async_job_result("job-9")
        assert result.status is JobStatus.PENDING
        assert result.job_id == "job-9"

    @pytest.mark.asyncio
    async def test_create_tags_flattens_pairs(
        self, client: CloudStackClient, cloudstack: FakeCloudStack
    ):
        await client.create_tags(
            CreateTagsParams(resource_ids=("vm-1",), resource_type="UserVm", tags={"b": "2", "a": "1"})
        )

        _, params = cloudstack.requests[0]
        assert params["resourceids"] == "vm-1"
        assert params["tags[0].key"] == "a"
        assert params["tags[0].value"] == "1"
        assert params["tags[1].key"] == "b"
