"""Site adapter for the arena chat UI."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from arenabridge.adapters.base import ModelOption, SiteAdapter
from arenabridge.middleware.error_handler import ModelSelectionFailedError

if TYPE_CHECKING:
    from playwright.async_api import Locator, Page

logger = logging.getLogger(__name__)


PROMPT_INPUT = 'textarea[placeholder*="Ask anything"], textarea[placeholder*="Send a message"]'
SEND_BUTTON = 'form button[type="submit"]'
MODEL_DROPDOWN_TRIGGERS = (
    'button[aria-haspopup="listbox"][id^="radix-"]:nth-of-type(2)',
    'button:has-text("Select model...")',
    'button[aria-haspopup="listbox"]',
    '[role="combobox"]',
)
MODEL_LISTBOX = 'div[role="listbox"]'
TOS_AGREE_BUTTON = 'form[action*="tos"] button[type="submit"]'
TURNSTILE_RESPONSE = 'textarea[name="cf-turnstile-response"]'

CHALLENGE_SELECTORS: tuple[str, ...] = (
    "form#challenge-form",
    "#cf-hcaptcha-container",
    'iframe[src*="hcaptcha"]',
    'iframe[src*="turnstile"]',
)
CHALLENGE_TEXT = "Checking if the site connection is secure"

SURFACE_SELECTORS: tuple[str, ...] = (
    "textarea",
    '[role="dialog"]',
    ".chat-container",
    ".conversation",
)
ERROR_WORDS: tuple[str, ...] = ("404", "not found", "unavailable")

# Records turnstile.render() options so a solver can be given the site key.
TURNSTILE_SNIFF_JS = """
(() => {
    window.capturedTurnstileParams = {};
    let wrapped = null;
    Object.defineProperty(window, 'turnstile', {
        configurable: true,
        get: () => wrapped,
        set: (value) => {
            if (value && typeof value.render === 'function') {
                const render = value.render.bind(value);
                value.render = (element, options) => {
                    window.capturedTurnstileParams = {
                        sitekey: options && options.sitekey,
                        action: options && options.action,
                        cData: options && options.cData,
                        chlPageData: options && options.chlPageData,
                        callbackName: options && options.callback && options.callback.name,
                    };
                    return render(element, options);
                };
            }
            wrapped = value;
        },
    });
})();
"""

_PICK_OPTION_JS = """
([listboxSelector, modelId]) => {
    const listbox = document.querySelector(listboxSelector);
    if (!listbox) return 'listbox_not_found';
    const options = Array.from(listbox.querySelectorAll('[role="option"], [cmdk-item]'));
    for (const option of options) {
        const value = option.getAttribute('data-value') || (option.textContent || '').trim();
        if (value === modelId || value.includes(modelId)) {
            if (option.getAttribute('aria-disabled') === 'true') return 'disabled';
            option.click();
            return 'selected';
        }
    }
    return 'not_found';
}
"""

_LIST_OPTIONS_JS = """
(listboxSelector) => {
    const listbox = document.querySelector(listboxSelector);
    if (!listbox) return [];
    return Array.from(listbox.querySelectorAll('[role="option"], [cmdk-item]'))
        .map((option) => {
            const name = (option.textContent || '').trim();
            return {
                id: option.getAttribute('data-value') || name,
                name: name,
                available: option.getAttribute('aria-disabled') !== 'true',
            };
        })
        .filter((model) => model.id);
}
"""

_APPLY_TOKEN_JS = """
([token, params, selector]) => {
    const textarea = document.querySelector(selector);
    if (textarea) textarea.value = token;
    if (params.callbackName && typeof window[params.callbackName] === 'function') {
        window[params.callbackName](token);
        return true;
    }
    if (textarea) {
        textarea.dispatchEvent(new Event('change', { bubbles: true }));
        return true;
    }
    return false;
}
"""


class ArenaSiteAdapter(SiteAdapter):
    """Selectors and markers for the arena web UI."""

    name = "arena"
    init_scripts = (TURNSTILE_SNIFF_JS,)

    def __init__(self, *, model_timeout_ms: int = 10_000) -> None:
        self._model_timeout_ms = model_timeout_ms

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_prompt_input(self, page: "Page", timeout_ms: int = 30_000) -> "Locator | None":
        return await self.wait_for_locator(page, PROMPT_INPUT, timeout_ms)

    async def find_send_control(self, page: "Page", timeout_ms: int = 30_000) -> "Locator | None":
        return await self.wait_for_locator(page, SEND_BUTTON, timeout_ms)

    async def find_model_selector(self, page: "Page", model_id: str) -> "Locator | None":
        for selector in MODEL_DROPDOWN_TRIGGERS:
            locator = await self.wait_for_locator(page, selector, self._model_timeout_ms // len(MODEL_DROPDOWN_TRIGGERS))
            if locator is not None:
                return locator
        return None

    async def select_model(self, page: "Page", model_id: str) -> None:
        trigger = await self.find_model_selector(page, model_id)
        if trigger is None:
            raise ModelSelectionFailedError("Model selection UI not found", model_id=model_id)

        try:
            await trigger.click()
        except Exception as exc:  # noqa: BLE001
            raise ModelSelectionFailedError(
                f"Could not open model dropdown: {exc}", model_id=model_id
            ) from exc

        if await self.wait_for_locator(page, MODEL_LISTBOX, 5_000) is None:
            raise ModelSelectionFailedError("Model list did not open", model_id=model_id)

        outcome = await page.evaluate(_PICK_OPTION_JS, [MODEL_LISTBOX, model_id])
        if outcome != "selected":
            raise ModelSelectionFailedError(
                f"Model {model_id} could not be selected ({outcome})", model_id=model_id
            )
        logger.info("Selected model %s", model_id)

    async def list_models(self, page: "Page") -> list[ModelOption]:
        trigger = await self.find_model_selector(page, "")
        if trigger is None:
            logger.warning("Model selection UI not found, no models listed")
            return []
        await trigger.click()
        if await self.wait_for_locator(page, MODEL_LISTBOX, 5_000) is None:
            logger.warning("Model list did not open")
            return []
        try:
            options = await page.evaluate(_LIST_OPTIONS_JS, MODEL_LISTBOX)
        finally:
            await page.keyboard.press("Escape")

        seen: set[str] = set()
        models = []
        for option in options or []:
            if option["id"] in seen:
                continue
            seen.add(option["id"])
            models.append(ModelOption(option["id"], option["name"] or option["id"], option["available"]))
        logger.info("Listed %d models from the picker", len(models))
        return models

    # ------------------------------------------------------------------
    # Content inspection
    # ------------------------------------------------------------------

    async def detect_challenge_markers(self, page: "Page") -> bool:
        if await self.any_selector(page, CHALLENGE_SELECTORS):
            return True
        text = await page.inner_text("body")
        return CHALLENGE_TEXT in text

    async def detect_success_markers(self, page: "Page") -> bool:
        text = await page.inner_text("body")
        lowered = text.lower()
        if "error" in lowered and any(word in lowered for word in ERROR_WORDS):
            return False
        if await self.any_selector(page, SURFACE_SELECTORS):
            return True
        return await self.any_selector(page, ['input[type="text"]']) and await self.any_selector(page, ["button"])

    async def challenge_parameters(self, page: "Page") -> dict[str, Any]:
        params = await page.evaluate("() => window.capturedTurnstileParams || {}")
        return {**(params or {}), "url": page.url}

    async def apply_challenge_token(self, page: "Page", token: str, params: dict[str, Any]) -> bool:
        return bool(await page.evaluate(_APPLY_TOKEN_JS, [token, params, TURNSTILE_RESPONSE]))

    async def dismiss_dialogs(self, page: "Page") -> None:
        agree = await self.wait_for_locator(page, TOS_AGREE_BUTTON, 2_000)
        if agree is None:
            return
        try:
            await agree.click()
            logger.info("Accepted terms of service dialog")
        except Exception:  # noqa: BLE001
            logger.warning("Failed to dismiss terms of service dialog", exc_info=True)
