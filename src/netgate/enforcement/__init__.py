"""Access Enforcement Module.

Keeps the block rule of every subscriber on the network gateway in line
with the subscriber's entitlement window:
- Compute desired access from the window
- Probe the remote rule (present / absent / indeterminate)
- Apply at most one corrective command, serialized per subscriber
- Reactivate subscribers exactly once when a payment is confirmed

Architecture: Clean Architecture with Hexagonal (Ports & Adapters)
"""
