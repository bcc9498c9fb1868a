"""Firewalled HTTP and WebSocket gateway for blockchain RPC nodes, with job-driven access rules and webhook events."""

__version__ = "0.1.0"