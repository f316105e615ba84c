"""Pre-adjustment network checks."""

from .network_checks import CheckStatus, NetworkHealth, check_network

__all__ = ["CheckStatus", "NetworkHealth", "check_network"]
