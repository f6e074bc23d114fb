"""Abstract base class for site adapters.

A site adapter owns everything that depends on the target site's markup:
where the prompt input and send control are, how a model is chosen, what a
challenge page looks like and what a usable chat page looks like. The
orchestration layer only ever talks to pages through an adapter.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from arenabridge.middleware.error_handler import SubmissionFailedError

if TYPE_CHECKING:
    from playwright.async_api import Locator, Page

logger = logging.getLogger(__name__)

_ANY_SELECTOR_JS = "(selectors) => selectors.some((s) => !!document.querySelector(s))"

_CLEAR_STORAGE_JS = """
() => {
    try { window.localStorage.clear(); } catch (e) {}
    try { window.sessionStorage.clear(); } catch (e) {}
}
"""


@dataclass
class ModelOption:
    """One entry of the site's model picker."""

    id: str
    name: str
    available: bool = True


class SiteAdapter(ABC):
    """Site-specific page operations.

    Subclasses implement the lookups and marker checks. ``submit_prompt``,
    ``reset_session_state`` and the selector helpers are shared.
    """

    name: str = "site"
    init_scripts: tuple[str, ...] = ()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @abstractmethod
    async def find_prompt_input(self, page: "Page", timeout_ms: int = 30_000) -> "Locator | None":
        """Return the prompt input, or ``None`` if it never appears."""

    @abstractmethod
    async def find_send_control(self, page: "Page", timeout_ms: int = 30_000) -> "Locator | None":
        """Return the send control, or ``None`` if it never appears."""

    @abstractmethod
    async def find_model_selector(self, page: "Page", model_id: str) -> "Locator | None":
        """Return the control that opens the model list, or ``None``."""

    @abstractmethod
    async def select_model(self, page: "Page", model_id: str) -> None:
        """Choose *model_id*. Raises :class:`ModelSelectionFailedError`."""

    async def list_models(self, page: "Page") -> list[ModelOption]:
        """Models offered by the site's picker. Sites without one list nothing."""
        return []

    # ------------------------------------------------------------------
    # Content inspection
    # ------------------------------------------------------------------

    @abstractmethod
    async def detect_challenge_markers(self, page: "Page") -> bool:
        """``True`` while an anti-bot challenge is showing."""

    @abstractmethod
    async def detect_success_markers(self, page: "Page") -> bool:
        """``True`` when the interactive chat surface is present and no error page is shown."""

    @abstractmethod
    async def challenge_parameters(self, page: "Page") -> dict[str, Any]:
        """Parameters an automated solver needs (site key, action, ...)."""

    @abstractmethod
    async def apply_challenge_token(self, page: "Page", token: str, params: dict[str, Any]) -> bool:
        """Inject a solver token into the page. Returns ``True`` if it was accepted."""

    async def dismiss_dialogs(self, page: "Page") -> None:
        """Close blocking modals (terms of service, notices). Best effort."""

    # ------------------------------------------------------------------
    # Shared behaviour
    # ------------------------------------------------------------------

    async def prepare_page(self, page: "Page") -> None:
        """Install the adapter's init scripts on *page*."""
        for script in self.init_scripts:
            await page.add_init_script(script)

    async def reset_session_state(self, page: "Page") -> None:
        """Clear cookies and web storage so the page carries no prior session."""
        await page.context.clear_cookies()
        if page.url and page.url.startswith("http"):
            await page.evaluate(_CLEAR_STORAGE_JS)

    async def submit_prompt(self, page: "Page", prompt: str, *, timeout_ms: int = 30_000) -> None:
        """Type *prompt* into the input and press send.

        Raises :class:`SubmissionFailedError` if either control is missing.
        """
        prompt_input = await self.find_prompt_input(page, timeout_ms)
        if prompt_input is None:
            raise SubmissionFailedError("Prompt input not found")
        await prompt_input.fill("")
        await prompt_input.fill(prompt)

        send = await self.find_send_control(page, timeout_ms)
        if send is None:
            raise SubmissionFailedError("Send control not found")
        await send.click()

    @staticmethod
    async def any_selector(page: "Page", selectors: list[str] | tuple[str, ...]) -> bool:
        """``True`` if any of *selectors* matches an element on *page*."""
        return bool(await page.evaluate(_ANY_SELECTOR_JS, list(selectors)))

    @staticmethod
    async def wait_for_locator(page: "Page", selector: str, timeout_ms: int) -> "Locator | None":
        """First visible match for *selector*, or ``None`` after *timeout_ms*."""
        locator = page.locator(selector).first
        try:
            await locator.wait_for(state="visible", timeout=timeout_ms)
        except Exception:  # noqa: BLE001
            logger.debug("Selector %r not visible within %dms", selector, timeout_ms)
            return None
        return locator
