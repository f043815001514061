"""Convergent installer for Magma Orchestrator + NMS on single-node k3s."""

__version__ = "0.1.0"
