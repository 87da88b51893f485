"""
iptconf - Structured editing of iptables-save rule-sets.

Parses iptables-save output into an in-memory model of tables, chains
and rules, edits it safely, and writes it back for iptables-restore.
"""

__version__ = "1.0.0"
__author__ = "iptconf Team"
