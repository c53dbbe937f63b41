"""
                Drone Food Fulfillment Service

Order fulfillment orchestration for a multi-restaurant food marketplace
delivered by a drone fleet: order splitting, delivery zones, hub
resolution, per-restaurant status tracking and drone lifecycle.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
