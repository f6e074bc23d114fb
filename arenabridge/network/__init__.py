"""Capture of the site's API traffic and server-side replay."""

from arenabridge.network.capture import CapturedRequest, CapturedResponse, NetworkCapture
from arenabridge.network.replay import RequestReplayer

__all__ = ["CapturedRequest", "CapturedResponse", "NetworkCapture", "RequestReplayer"]
