# -*- coding: utf-8 -*-
"""
网关Admin API客户端测试
"""

import unittest

import httpx
import pytest

from gatesync.core.config import AdminConfig
from gatesync.core.errors import AdminAPIRejected, AdminAPIUnavailable, Conflict, FatalError
from gatesync.reconcile.admin_client import GatewayAdminClient, extract_version
from gatesync.translation.models import ObjectKind

ADMIN_BASE_URL = "http://gateway.test/apisix/admin"


class TestGatewayAdminClient:
    """GatewayAdminClient"""

    async def test_put_sends_api_key(self, admin_client, fake_gateway):
        version = await admin_client.put(ObjectKind.ROUTE, "r1", {"id": "r1", "uris": ["/"]})

        assert version == "1"
        assert fake_gateway.objects[("routes", "r1")] == {"id": "r1", "uris": ["/"]}
        assert fake_gateway.headers[0]["X-API-KEY"] == "test-key"
        assert fake_gateway.headers[0]["Content-Type"] == "application/json"

    async def test_put_conflict(self, admin_client, fake_gateway):
        fake_gateway.fail("PUT", status=409)
        with pytest.raises(Conflict):
            await admin_client.put(ObjectKind.ROUTE, "r1", {})

    async def test_put_rejected(self, admin_client, fake_gateway):
        fake_gateway.fail("PUT", status=400)
        with pytest.raises(AdminAPIRejected) as exc_info:
            await admin_client.put(ObjectKind.ROUTE, "r1", {})
        assert exc_info.value.code == 400
        assert "injected failure" in exc_info.value.message

    async def test_put_server_error(self, admin_client, fake_gateway):
        fake_gateway.fail("PUT", status=502)
        with pytest.raises(AdminAPIUnavailable):
            await admin_client.put(ObjectKind.ROUTE, "r1", {})

    async def test_transport_error(self, admin_client, fake_gateway):
        fake_gateway.fail("PUT", exc=httpx.ConnectError("boom"))
        with pytest.raises(AdminAPIUnavailable):
            await admin_client.put(ObjectKind.UPSTREAM, "u1", {})

    async def test_delete_missing_is_success(self, admin_client, fake_gateway):
        await admin_client.delete(ObjectKind.ROUTE, "absent")
        assert fake_gateway.count("DELETE", "absent") == 1

    async def test_delete_server_error(self, admin_client, fake_gateway):
        fake_gateway.fail("DELETE", status=500)
        with pytest.raises(AdminAPIUnavailable):
            await admin_client.delete(ObjectKind.ROUTE, "r1")

    async def test_get(self, admin_client):
        assert await admin_client.get(ObjectKind.SSL, "s1") is None

        await admin_client.put(ObjectKind.SSL, "s1", {"id": "s1", "snis": ["a.example.com"]})
        item = await admin_client.get(ObjectKind.SSL, "s1")

        assert item["id"] == "s1"
        assert item["value"]["snis"] == ["a.example.com"]
        assert item["version"] == "1"

    async def test_list(self, admin_client):
        await admin_client.put(ObjectKind.UPSTREAM, "u1", {"id": "u1"})
        await admin_client.put(ObjectKind.UPSTREAM, "u2", {"id": "u2"})
        await admin_client.put(ObjectKind.ROUTE, "r1", {"id": "r1"})

        items = await admin_client.list(ObjectKind.UPSTREAM)

        assert [item["id"] for item in items] == ["u1", "u2"]

    async def test_list_v2_format(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "node": {
                        "nodes": [
                            {"key": "/apisix/routes/r7", "value": {"uri": "/"}, "modifiedIndex": 7}
                        ]
                    }
                },
            )

        async with GatewayAdminClient(
            AdminConfig(base_url=ADMIN_BASE_URL), transport=httpx.MockTransport(handler)
        ) as client:
            items = await client.list(ObjectKind.ROUTE)

        assert items == [{"id": "r7", "value": {"uri": "/"}, "version": "7"}]

    async def test_probe_ok(self, admin_client):
        assert await admin_client.probe() is True

    @pytest.mark.parametrize("status", [401, 403])
    async def test_probe_bad_credentials(self, admin_client, fake_gateway, status):
        fake_gateway.fail("GET", status=status)
        with pytest.raises(FatalError):
            await admin_client.probe()

    async def test_probe_unreachable(self, admin_client, fake_gateway):
        fake_gateway.fail("GET", exc=httpx.ConnectError("boom"))
        assert await admin_client.probe() is False

    async def test_probe_server_error(self, admin_client, fake_gateway):
        fake_gateway.fail("GET", status=503)
        assert await admin_client.probe() is False

    async def test_no_api_key_header(self, fake_gateway):
        async with GatewayAdminClient(
            AdminConfig(base_url=ADMIN_BASE_URL, api_key=""),
            transport=httpx.MockTransport(fake_gateway.handler),
        ) as client:
            await client.delete(ObjectKind.ROUTE, "r1")

        assert "X-API-KEY" not in fake_gateway.headers[0]


class TestExtractVersion(unittest.TestCase):
    def test_modified_index(self):
        self.assertEqual(extract_version({"modifiedIndex": 12}), "12")

    def test_update_time_fallback(self):
        self.assertEqual(extract_version({"value": {"update_time": 1700000000}}), "1700000000")

    def test_missing(self):
        self.assertIsNone(extract_version({"value": {}}))
        self.assertIsNone(extract_version(None))
