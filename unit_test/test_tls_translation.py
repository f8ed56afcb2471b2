# -*- coding: utf-8 -*-
"""
TLS翻译测试
"""

import base64
import unittest

import pytest

from gatesync.core.errors import (
    EmptySNIList,
    InvalidCertificateKeyPair,
    MalformedSecret,
    SecretNotFound,
    TranslationError,
)
from gatesync.core.resource_cache import InMemoryResourceCache, KIND_SECRET
from gatesync.translation.models import ObjectKind
from gatesync.translation.tls import dedup, translate_ingress_tls
from gatesync.translation.translator import Translator


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class TestTranslateIngressTLS:
    """translate_ingress_tls"""

    @pytest.fixture(autouse=True)
    def setup_cache(self, key_pair, make_secret):
        self.cert, self.key = key_pair
        self.make_secret = make_secret
        self.cache = InMemoryResourceCache()

    def test_round_trip(self):
        """证书和私钥与Secret内容完全一致，主机名去重"""
        self.cache.upsert(KIND_SECRET, self.make_secret())

        certificate = translate_ingress_tls(
            self.cache,
            "default",
            "web",
            "api-tls",
            ["api.example.com", "www.example.com", "api.example.com"],
        )

        assert certificate.cert.encode() == self.cert
        assert certificate.key.encode() == self.key
        assert certificate.snis == ["api.example.com", "www.example.com"]
        assert certificate.kind == ObjectKind.SSL
        assert certificate.owner.key == "Ingress/default/web"

    def test_custom_field_names(self):
        """cert/key 字段名"""
        self.cache.upsert(
            KIND_SECRET, self.make_secret(cert_field="cert", key_field="key")
        )

        certificate = translate_ingress_tls(
            self.cache, "default", "web", "api-tls", ["api.example.com"]
        )
        assert certificate.cert.encode() == self.cert

    def test_raw_bytes_data(self):
        """内存中的Secret字段可以直接是字节"""
        self.cache.upsert(
            KIND_SECRET,
            self.make_secret(data={"tls.crt": self.cert, "tls.key": self.key}),
        )

        certificate = translate_ingress_tls(
            self.cache, "default", "web", "api-tls", ["api.example.com"]
        )
        assert certificate.key.encode() == self.key

    def test_missing_secret(self):
        with pytest.raises(SecretNotFound) as exc_info:
            translate_ingress_tls(self.cache, "default", "web", "absent", ["a.example.com"])

        assert exc_info.value.namespace == "default"
        assert exc_info.value.name == "absent"

    def test_missing_key_field(self):
        self.cache.upsert(
            KIND_SECRET, self.make_secret(data={"tls.crt": b64(self.cert)})
        )

        with pytest.raises(MalformedSecret) as exc_info:
            translate_ingress_tls(self.cache, "default", "web", "api-tls", ["a.example.com"])

        assert exc_info.value.secret_ref == "default/api-tls"

    def test_ambiguous_fields(self, other_key_pem):
        """两种字段名内容不同时视为格式错误"""
        self.cache.upsert(
            KIND_SECRET,
            self.make_secret(
                data={
                    "tls.crt": b64(self.cert),
                    "tls.key": b64(self.key),
                    "key": b64(other_key_pem),
                }
            ),
        )

        with pytest.raises(MalformedSecret):
            translate_ingress_tls(self.cache, "default", "web", "api-tls", ["a.example.com"])

    def test_both_fields_same_content(self):
        self.cache.upsert(
            KIND_SECRET,
            self.make_secret(
                data={
                    "tls.crt": b64(self.cert),
                    "cert": b64(self.cert),
                    "tls.key": b64(self.key),
                }
            ),
        )

        certificate = translate_ingress_tls(
            self.cache, "default", "web", "api-tls", ["a.example.com"]
        )
        assert certificate.cert.encode() == self.cert

    def test_mismatched_key_pair(self, other_key_pem):
        self.cache.upsert(
            KIND_SECRET,
            self.make_secret(
                data={"tls.crt": b64(self.cert), "tls.key": b64(other_key_pem)}
            ),
        )

        with pytest.raises(InvalidCertificateKeyPair) as exc_info:
            translate_ingress_tls(self.cache, "default", "web", "api-tls", ["a.example.com"])

        assert exc_info.value.secret_ref == "default/api-tls"

    def test_unparseable_certificate(self):
        self.cache.upsert(
            KIND_SECRET,
            self.make_secret(
                data={"tls.crt": b64(b"not a certificate"), "tls.key": b64(self.key)}
            ),
        )

        with pytest.raises(InvalidCertificateKeyPair):
            translate_ingress_tls(self.cache, "default", "web", "api-tls", ["a.example.com"])

    def test_invalid_base64(self):
        self.cache.upsert(
            KIND_SECRET,
            self.make_secret(data={"tls.crt": "!!!", "tls.key": b64(self.key)}),
        )

        with pytest.raises(MalformedSecret):
            translate_ingress_tls(self.cache, "default", "web", "api-tls", ["a.example.com"])

    def test_empty_hosts(self):
        self.cache.upsert(KIND_SECRET, self.make_secret())

        with pytest.raises(EmptySNIList) as exc_info:
            translate_ingress_tls(self.cache, "default", "web", "api-tls", [])
        assert isinstance(exc_info.value, TranslationError)


class TestApisixTls:
    """ApisixTls 资源"""

    @pytest.fixture(autouse=True)
    def setup_cache(self, key_pair, make_secret):
        self.cert, _ = key_pair
        self.cache = InMemoryResourceCache()
        self.cache.upsert(KIND_SECRET, make_secret(namespace="certs", name="shared"))
        self.translator = Translator(self.cache)

    def resource(self, secret):
        return {
            "kind": "ApisixTls",
            "metadata": {"namespace": "default", "name": "api"},
            "spec": {"hosts": ["api.example.com"], "secret": secret},
        }

    def test_secret_in_other_namespace(self):
        result = self.translator.translate(
            self.resource({"name": "shared", "namespace": "certs"})
        )

        assert len(result.objects) == 1
        certificate = result.objects[0]
        assert certificate.cert.encode() == self.cert
        assert certificate.owner.key == "ApisixTls/default/api"
        assert result.secret_refs == ["certs/shared"]

    def test_missing_secret_name(self):
        with pytest.raises(TranslationError):
            self.translator.translate(self.resource({}))

    def test_secret_defaults_to_owner_namespace(self):
        with pytest.raises(SecretNotFound) as exc_info:
            self.translator.translate(self.resource({"name": "shared"}))
        assert exc_info.value.namespace == "default"


class TestDedup(unittest.TestCase):
    def test_keeps_first_occurrence_order(self):
        self.assertEqual(dedup(["b", "a", "b", "c", "a"]), ["b", "a", "c"])

    def test_empty(self):
        self.assertEqual(dedup([]), [])
