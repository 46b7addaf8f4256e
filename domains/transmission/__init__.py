"""
Transmission Domain

Watches configured directories and pushes file changes to the receiver:
- watchers/ - notifier adapter, directory registration, debouncing, dispatch
- delivery/ - read retries and status-code policy on top of the HTTP client
- agent.py - lifecycle that wires the pieces together
"""

__all__ = ["agent", "delivery", "watchers"]
