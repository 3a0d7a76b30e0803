"""
proxy-init - Sidecar proxy traffic redirection.

Configures a network namespace's NAT table so that inbound and outbound
TCP traffic is transparently redirected through a local proxy.
"""

__version__ = "1.0.0"
__author__ = "Proxy Init Team"
