"""Unit tests for the arena adapter's model picker handling."""

import pytest

from arenabridge.adapters.arena import MODEL_LISTBOX, ArenaSiteAdapter
from arenabridge.adapters.base import ModelOption


class StubLocator:
    def __init__(self, page, selector):
        self.page = page
        self.selector = selector

    @property
    def first(self):
        return self

    async def wait_for(self, state="visible", timeout=0):
        if self.selector not in self.page.visible:
            raise TimeoutError(f"{self.selector} not visible")

    async def click(self):
        self.page.clicked.append(self.selector)
        self.page.visible.add(MODEL_LISTBOX)


class StubKeyboard:
    def __init__(self):
        self.pressed = []

    async def press(self, key):
        self.pressed.append(key)


class PickerPage:
    """Page with a model dropdown trigger whose listbox holds *options*."""

    def __init__(self, options, trigger='[role="combobox"]'):
        self.options = options
        self.visible = {trigger} if trigger else set()
        self.clicked = []
        self.keyboard = StubKeyboard()

    def locator(self, selector):
        return StubLocator(self, selector)

    async def evaluate(self, script, arg=None):
        assert arg == MODEL_LISTBOX
        return self.options


class TestListModels:
    @pytest.mark.asyncio
    async def test_reads_options_and_closes_picker(self):
        page = PickerPage([
            {"id": "gpt-4o", "name": "GPT-4o", "available": True},
            {"id": "gpt-4o", "name": "GPT-4o", "available": True},
            {"id": "legacy", "name": "", "available": False},
        ])

        models = await ArenaSiteAdapter(model_timeout_ms=40).list_models(page)

        assert models == [
            ModelOption("gpt-4o", "GPT-4o", True),
            ModelOption("legacy", "legacy", False),
        ]
        assert page.clicked == ['[role="combobox"]']
        assert page.keyboard.pressed == ["Escape"]

    @pytest.mark.asyncio
    async def test_no_picker_lists_nothing(self):
        page = PickerPage([], trigger=None)
        assert await ArenaSiteAdapter(model_timeout_ms=40).list_models(page) == []
        assert page.keyboard.pressed == []
