"""Service abstractions for reading and writing rule-sets."""

from iptconf.services.iptables import IptablesStore

__all__ = [
    "IptablesStore",
]
