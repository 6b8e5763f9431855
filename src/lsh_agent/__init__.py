"""
Latitude.sh Agent - Host firewall reconciliation.

Keeps the local UFW allow-list in sync with the firewall policy
declared for this server in the Latitude.sh control plane.
"""

__version__ = "1.0.0"
__author__ = "Latitude.sh Agent Team"
