"""Browser identity profiles for anti-detection.

A profile is the identity the shared browser presents: user agent, viewport,
locale, timezone and client-hint headers. Rotating to a different profile is
how the navigation search escapes a blocked identity. Every context also
gets JS overrides that mask the usual automation tells.
"""

from __future__ import annotations

from dataclasses import dataclass, field


# ---------------------------------------------------------------------------
# JavaScript overrides to mask automation detection
# ---------------------------------------------------------------------------

WEBDRIVER_OVERRIDE_JS = """
(() => {
    // Mask navigator.webdriver
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined,
        configurable: true,
    });

    // Mask chrome.runtime to appear as a normal Chrome browser
    if (!window.chrome) {
        window.chrome = {};
    }
    if (!window.chrome.runtime) {
        window.chrome.runtime = {
            connect: function() {},
            sendMessage: function() {},
        };
    }

    // Non-empty plugin and language lists
    Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3] });
    Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
})();
"""


# ---------------------------------------------------------------------------
# BrowserProfile dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BrowserProfile:
    """A named browser identity."""

    name: str
    user_agent: str
    viewport_width: int = 1920
    viewport_height: int = 1080
    locale: str = "en-US"
    timezone: str = "America/New_York"
    extra_headers: dict[str, str] = field(default_factory=dict, hash=False)

    def context_options(self) -> dict:
        """Keyword arguments for ``browser.new_context``."""
        return {
            "user_agent": self.user_agent,
            "viewport": {"width": self.viewport_width, "height": self.viewport_height},
            "locale": self.locale,
            "timezone_id": self.timezone,
            "extra_http_headers": dict(self.extra_headers),
        }


_CHROME_HINTS = '"Chromium";v="136", "Google Chrome";v="136", "Not.A/Brand";v="99"'

DEFAULT_PROFILES: tuple[BrowserProfile, ...] = (
    BrowserProfile(
        name="Chrome Mac",
        user_agent=(
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/136.0.0.0 Safari/537.36"
        ),
        extra_headers={
            "sec-ch-ua": _CHROME_HINTS,
            "sec-ch-ua-mobile": "?0",
            "sec-ch-ua-platform": '"macOS"',
        },
    ),
    BrowserProfile(
        name="Chrome Windows",
        user_agent=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/136.0.0.0 Safari/537.36"
        ),
        extra_headers={
            "sec-ch-ua": _CHROME_HINTS,
            "sec-ch-ua-mobile": "?0",
            "sec-ch-ua-platform": '"Windows"',
        },
    ),
    BrowserProfile(
        name="Safari Mac",
        user_agent=(
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
            "(KHTML, like Gecko) Version/17.0 Safari/605.1.15"
        ),
        timezone="America/Los_Angeles",
        extra_headers={
            "sec-ch-ua": '"Not.A/Brand";v="99", "Apple Safari";v="17"',
            "sec-ch-ua-mobile": "?0",
            "sec-ch-ua-platform": '"macOS"',
        },
    ),
    BrowserProfile(
        name="Edge Windows",
        user_agent=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/136.0.0.0 Safari/537.36 Edg/136.0.0.0"
        ),
        timezone="America/Chicago",
        extra_headers={
            "sec-ch-ua": '"Chromium";v="136", "Microsoft Edge";v="136", "Not.A/Brand";v="99"',
            "sec-ch-ua-mobile": "?0",
            "sec-ch-ua-platform": '"Windows"',
        },
    ),
)


def select_profiles(names: list[str] | None) -> list[BrowserProfile]:
    """Return the profiles named in *names* (order kept), or all defaults.

    Raises ``ValueError`` for an unknown name.
    """
    if not names:
        return list(DEFAULT_PROFILES)
    by_name = {p.name.lower(): p for p in DEFAULT_PROFILES}
    selected = []
    for name in names:
        profile = by_name.get(name.strip().lower())
        if profile is None:
            raise ValueError(f"Unknown browser profile: {name}")
        if profile not in selected:
            selected.append(profile)
    return selected


def next_profile(profiles: list[BrowserProfile], current: BrowserProfile | None) -> BrowserProfile:
    """The profile after *current*, wrapping around."""
    if current is None or current not in profiles:
        return profiles[0]
    return profiles[(profiles.index(current) + 1) % len(profiles)]

