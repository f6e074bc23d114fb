"""Shared browser, rotating profiles and the bounded page pool."""

from arenabridge.browser.manager import CHROMIUM_ARGS, BrowserLease, BrowserManager
from arenabridge.browser.pool import PageHandle, PagePool
from arenabridge.browser.profiles import DEFAULT_PROFILES, BrowserProfile, select_profiles

__all__ = [
    "CHROMIUM_ARGS",
    "DEFAULT_PROFILES",
    "BrowserLease",
    "BrowserManager",
    "BrowserProfile",
    "PageHandle",
    "PagePool",
    "select_profiles",
]
