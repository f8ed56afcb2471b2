# -*- coding: utf-8 -*-
"""
测试公共夹具
证书私钥、Secret构造和基于 httpx.MockTransport 的网关Admin API模拟
"""

import base64
import datetime
import json
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from gatesync.core.config import AdminConfig, ControllerConfig
from gatesync.reconcile.admin_client import GatewayAdminClient

ADMIN_BASE_URL = "http://gateway.test/apisix/admin"
ADMIN_PREFIX = "/apisix/admin/"


def _private_key_pem(key) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def key_pair() -> Tuple[bytes, bytes]:
    """自签名证书和对应私钥（PEM）"""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "api.example.com")])
    now = datetime.datetime.now(datetime.timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=365))
        .sign(key, hashes.SHA256())
    )
    return certificate.public_bytes(serialization.Encoding.PEM), _private_key_pem(key)


@pytest.fixture(scope="session")
def other_key_pem() -> bytes:
    """与 key_pair 证书不匹配的私钥"""
    return _private_key_pem(rsa.generate_private_key(public_exponent=65537, key_size=2048))


@pytest.fixture
def make_secret(key_pair):
    """
    构造Secret对象

    默认使用 kubernetes.io/tls 字段名，字段值为API形式的base64字符串。
    """

    def factory(
        namespace: str = "default",
        name: str = "api-tls",
        data: Optional[Dict[str, Any]] = None,
        cert_field: str = "tls.crt",
        key_field: str = "tls.key",
    ) -> Dict[str, Any]:
        if data is None:
            cert, key = key_pair
            data = {
                cert_field: base64.b64encode(cert).decode("ascii"),
                key_field: base64.b64encode(key).decode("ascii"),
            }
        return {
            "kind": "Secret",
            "metadata": {"namespace": namespace, "name": name},
            "data": data,
        }

    return factory


class FakeGateway:
    """内存中的网关Admin API"""

    def __init__(self):
        # {(collection, id): payload}
        self.objects: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.requests: List[Tuple[str, str, Optional[str]]] = []
        self.headers: List[httpx.Headers] = []
        self._failures: List[Dict[str, Any]] = []
        self._index = 0

    def fail(
        self,
        method: str,
        object_id: Optional[str] = None,
        status: int = 503,
        times: int = 1,
        exc: Optional[Exception] = None,
    ):
        """让接下来匹配的请求失败 times 次"""
        self._failures.append(
            {"method": method, "id": object_id, "status": status, "times": times, "exc": exc}
        )

    def count(self, method: str, object_id: Optional[str] = None) -> int:
        return sum(
            1
            for m, _, oid in self.requests
            if m == method and (object_id is None or oid == object_id)
        )

    def ids(self, collection: str) -> List[str]:
        return sorted(oid for coll, oid in self.objects if coll == collection)

    def _match_failure(self, method: str, object_id: Optional[str]):
        for failure in self._failures:
            if failure["times"] <= 0 or failure["method"] != method:
                continue
            if failure["id"] is not None and failure["id"] != object_id:
                continue
            failure["times"] -= 1
            return failure
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        assert path.startswith(ADMIN_PREFIX), path
        parts = path[len(ADMIN_PREFIX):].strip("/").split("/")
        collection = parts[0]
        object_id = parts[1] if len(parts) > 1 else None

        self.requests.append((request.method, collection, object_id))
        self.headers.append(request.headers)

        failure = self._match_failure(request.method, object_id)
        if failure is not None:
            if failure["exc"] is not None:
                raise failure["exc"]
            return httpx.Response(failure["status"], json={"error_msg": "injected failure"})

        key = (collection, object_id)
        if request.method == "PUT":
            self._index += 1
            payload = json.loads(request.content)
            self.objects[key] = payload
            return httpx.Response(
                201,
                json={
                    "key": f"/apisix/{collection}/{object_id}",
                    "value": payload,
                    "modifiedIndex": self._index,
                },
            )

        if request.method == "DELETE":
            if self.objects.pop(key, None) is None:
                return httpx.Response(404, json={"message": "Key not found"})
            return httpx.Response(200, json={"deleted": "1", "key": f"/apisix/{collection}/{object_id}"})

        if request.method == "GET" and object_id is None:
            items = [
                {"key": f"/apisix/{coll}/{oid}", "value": value, "modifiedIndex": 1}
                for (coll, oid), value in sorted(self.objects.items())
                if coll == collection
            ]
            return httpx.Response(200, json={"total": len(items), "list": items})

        if request.method == "GET":
            if key not in self.objects:
                return httpx.Response(404, json={"message": "Key not found"})
            return httpx.Response(
                200, json={"key": f"/apisix/{collection}/{object_id}", "value": self.objects[key], "modifiedIndex": 1}
            )

        return httpx.Response(405)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
async def admin_client(fake_gateway):
    client = GatewayAdminClient(
        AdminConfig(base_url=ADMIN_BASE_URL, api_key="test-key", timeout=5.0),
        transport=httpx.MockTransport(fake_gateway.handler),
    )
    yield client
    await client.close()


@pytest.fixture
def fast_config() -> ControllerConfig:
    """无等待的重试配置"""
    return ControllerConfig(
        workers=2,
        max_retries=2,
        retry_delay=0,
        retry_backoff=1.0,
        requeue_base_delay=0.01,
        requeue_max_delay=0.05,
        resync_period=0,
        cache_sync_timeout=0.5,
    )
