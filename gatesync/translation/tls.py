# -*- coding: utf-8 -*-
"""
TLS翻译
把 Secret 中的证书/私钥和主机名列表翻译为网关证书对象
"""

import base64
import binascii
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from gatesync.core.errors import (
    EmptySNIList,
    InvalidCertificateKeyPair,
    MalformedSecret,
    SecretNotFound,
)
from gatesync.core.resource_cache import KIND_SECRET, ResourceCache
from gatesync.translation.models import Certificate, ObjectKind, OwnerRef, gen_id

logger = logging.getLogger(__name__)

# 同时接受自定义字段名和 kubernetes.io/tls 标准字段名
CERT_FIELDS = ("cert", "tls.crt")
KEY_FIELDS = ("key", "tls.key")


def dedup(values: Iterable[str]) -> List[str]:
    """保持首次出现顺序去重"""
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def _decode_field(value: Any, secret_id: str, field_name: str) -> bytes:
    # API形式的Secret字段是base64字符串，内存缓存中也可能直接是字节
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedSecret(
                f"Secret {secret_id} 字段 {field_name} 不是合法的base64: {e}"
            ) from e
    raise MalformedSecret(f"Secret {secret_id} 字段 {field_name} 类型错误")


def _pick_field(data: Dict[str, Any], fields, secret_id: str) -> bytes:
    """
    读取证书或私钥字段

    两种字段名同时存在且内容不同时无法判断以哪个为准，按格式错误处理。
    """
    values = {
        name: _decode_field(data[name], secret_id, name)
        for name in fields
        if data.get(name) not in (None, "", b"")
    }
    if not values:
        raise MalformedSecret(
            f"Secret {secret_id} 缺少字段 {' 或 '.join(repr(f) for f in fields)}"
        )
    if len(set(values.values())) > 1:
        raise MalformedSecret(
            f"Secret {secret_id} 字段 {' 和 '.join(sorted(values))} 内容不一致"
        )
    return next(iter(values.values()))


def extract_key_pair(secret: Dict[str, Any]) -> Tuple[bytes, bytes]:
    """从Secret中取出证书和私钥的原始字节"""
    metadata = secret.get("metadata") or {}
    secret_id = f"{metadata.get('namespace')}/{metadata.get('name')}"
    data = secret.get("data") or {}

    cert = _pick_field(data, CERT_FIELDS, secret_id)
    key = _pick_field(data, KEY_FIELDS, secret_id)
    return cert, key


def validate_key_pair(cert: bytes, key: bytes):
    """
    校验PEM证书和私钥

    Raises:
        InvalidCertificateKeyPair: 无法解析，或私钥与证书公钥不匹配
    """
    try:
        certificate = x509.load_pem_x509_certificate(cert)
    except ValueError as e:
        raise InvalidCertificateKeyPair(f"证书无法解析: {e}") from e

    try:
        private_key = serialization.load_pem_private_key(key, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise InvalidCertificateKeyPair(f"私钥无法解析: {e}") from e

    try:
        cert_public = certificate.public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        key_public = private_key.public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    except (ValueError, UnsupportedAlgorithm) as e:
        raise InvalidCertificateKeyPair(f"无法比较公钥: {e}") from e

    if cert_public != key_public:
        raise InvalidCertificateKeyPair("私钥与证书公钥不匹配")


def translate_ingress_tls(
    cache: ResourceCache,
    namespace: str,
    owner_name: str,
    secret_name: str,
    hosts: List[str],
    owner_kind: str = "Ingress",
    secret_namespace: Optional[str] = None,
) -> Certificate:
    """
    把TLS绑定翻译为证书对象

    Args:
        cache: 资源缓存
        namespace: owner所在命名空间
        owner_name: owner名称
        secret_name: Secret名称
        hosts: 证书服务的主机名
        owner_kind: owner资源类型
        secret_namespace: Secret所在命名空间，默认与owner相同

    Returns:
        Certificate: 证书对象，cert/key与Secret中的内容一致

    Raises:
        SecretNotFound: 缓存中没有该Secret
        MalformedSecret: 缺少证书/私钥字段
        InvalidCertificateKeyPair: 证书私钥无效或不匹配
        EmptySNIList: 没有主机名
    """
    secret_namespace = secret_namespace or namespace
    owner = OwnerRef(kind=owner_kind, namespace=namespace, name=owner_name)

    secret = cache.get(KIND_SECRET, secret_namespace, secret_name)
    if secret is None:
        logger.warning(
            "[TLS翻译][%s]Secret不存在 - secret=%s/%s",
            owner.key,
            secret_namespace,
            secret_name,
        )
        raise SecretNotFound(secret_namespace, secret_name)

    try:
        cert, key = extract_key_pair(secret)
        validate_key_pair(cert, key)
        try:
            cert_text = cert.decode("utf-8")
            key_text = key.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedSecret(
                f"Secret {secret_namespace}/{secret_name} 不是PEM文本"
            ) from e
    except (MalformedSecret, InvalidCertificateKeyPair) as e:
        # Secret修复后由它自己的变更通知重新触发
        e.secret_ref = f"{secret_namespace}/{secret_name}"
        raise

    snis = dedup(hosts or [])
    if not snis:
        raise EmptySNIList(f"{owner.key} 的TLS绑定没有主机名")

    return Certificate(
        id=gen_id(
            ObjectKind.SSL.value,
            owner_kind,
            namespace,
            owner_name,
            secret_namespace,
            secret_name,
        ),
        owner=owner,
        name=f"{namespace}_{owner_name}_{secret_name}",
        cert=cert_text,
        key=key_text,
        snis=snis,
    )
