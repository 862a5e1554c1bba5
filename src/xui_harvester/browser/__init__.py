"""Browser session management."""

from .session import BrowserLaunchOptions, BrowserSessionManager, PlaywrightBrowserSession

__all__ = ["BrowserLaunchOptions", "BrowserSessionManager", "PlaywrightBrowserSession"]
