"""Change notifications delivered to in-process subscribers after commit."""

from hrdesk.notifications.service import ChangeEvent, ChangeFeed, Subscription, subscribe_to_changes

__all__ = ["ChangeEvent", "ChangeFeed", "Subscription", "subscribe_to_changes"]
