"""
gatesync

Keeps a gateway's admin-API routing configuration in line with Kubernetes
route, TLS and ingress resources.
"""

__version__ = "0.1.0"
