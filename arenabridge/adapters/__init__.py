"""Site adapters: everything that knows the target page's markup."""

from arenabridge.adapters.arena import ArenaSiteAdapter
from arenabridge.adapters.base import ModelOption, SiteAdapter

__all__ = ["ArenaSiteAdapter", "ModelOption", "SiteAdapter"]
