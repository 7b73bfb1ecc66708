"""Oria marketplace backend: asset minting, transfer and fee sponsorship on the Nexus ledger."""

__version__ = "0.3.0"
