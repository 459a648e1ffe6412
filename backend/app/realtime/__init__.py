"""
Change feed and its cross-worker Redis bridge.
"""
from app.realtime.feed import ChangeEvent, ChangeFeed, Subscription, change_feed

__all__ = ["ChangeEvent", "ChangeFeed", "Subscription", "change_feed"]
