"""Real-time delivery of admitted donations to session subscribers."""

from donation_sync.sync.channel import EventChannel
from donation_sync.sync.hub import SessionSyncHub, Subscription

__all__ = ["EventChannel", "SessionSyncHub", "Subscription"]
