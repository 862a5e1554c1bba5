"""Error taxonomy for stable module boundaries."""


class HarvesterError(Exception):
    """Base exception for xui-harvester."""


class ConfigError(HarvesterError):
    """Raised when configuration is invalid or missing."""


class StoreError(HarvesterError):
    """Raised for persisted record read/write failures."""


class BrowserError(HarvesterError):
    """Raised for browser/session management failures."""


class CollectError(HarvesterError):
    """Raised when the page source cannot observe, scroll or navigate."""


class CrawlError(HarvesterError):
    """Raised for engine and multi-page crawl coordination failures."""


class RenderError(HarvesterError):
    """Raised when rendering output fails."""


class DiagnosticsError(HarvesterError):
    """Raised for structured run-event failures."""
