"""
Resource Translation

This module turns cluster resources into gateway-native objects:
- Translator: dispatches ApisixRoute, Ingress, ApisixTls and ApisixPluginConfig
- translate_ingress_tls: Secret + host list to a validated certificate
"""

from .models import (
    Certificate,
    GatewayObject,
    ObjectKind,
    OwnerRef,
    PluginConfig,
    Route,
    TranslationResult,
    Upstream,
)
from .tls import translate_ingress_tls
from .translator import Translator

__all__ = [
    "Certificate",
    "GatewayObject",
    "ObjectKind",
    "OwnerRef",
    "PluginConfig",
    "Route",
    "TranslationResult",
    "Upstream",
    "Translator",
    "translate_ingress_tls",
]
