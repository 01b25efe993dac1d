"""Exception hierarchy for the visual regression harness."""

from __future__ import annotations


class HarnessError(Exception):
    """Base class for every error raised by the harness."""


# Configuration errors: fail fast, before any capture happens.


class ConfigurationError(HarnessError, EnvironmentError):
    pass


class MissingCredentialsError(ConfigurationError):
    def __init__(self, service: str, variables: list[str]):
        self.service = service
        self.variables = variables
        super().__init__(
            f"{service} credentials not found. "
            f"Set {' and '.join(variables)} environment variable"
            f"{'s' if len(variables) > 1 else ''}."
        )


class UnknownBrowserError(ConfigurationError):
    def __init__(self, browser: str, available: list[str]):
        self.browser = browser
        self.available = available
        super().__init__(
            f"Unknown browser '{browser}'. Available: {', '.join(available)}"
        )


# Capture errors: a broken fixture, not a visual regression.


class CaptureError(HarnessError):
    pass


class ElementNotFoundError(CaptureError):
    def __init__(self, selector: str):
        self.selector = selector
        super().__init__(f"Element not found: {selector}")


class DimensionMismatchError(CaptureError, ValueError):
    def __init__(self, file_name: str, baseline_size: tuple[int, int], actual_size: tuple[int, int]):
        self.baseline_size = baseline_size
        self.actual_size = actual_size
        super().__init__(
            f"Image dimensions differ for {file_name}: "
            f"baseline {baseline_size[0]}x{baseline_size[1]}, "
            f"actual {actual_size[0]}x{actual_size[1]}"
        )


# Remote adapter errors: converted into failing results by the router.


class RemoteAdapterError(HarnessError):
    pass


class RemoteSDKMissingError(RemoteAdapterError, ImportError):
    def __init__(
        self,
        service: str,
        package: str,
        family: str | None = None,
        installer: str = "npm install --save-dev",
        reason: str | None = None,
    ):
        self.service = service
        self.package = package
        target = f" for {family}" if family else ""
        reason = reason or f"{service} SDK not installed{target}"
        super().__init__(f"{reason}. Install it with: {installer} {package}")


class UnknownFrameworkError(RemoteAdapterError, TypeError):
    def __init__(self, handle: object):
        super().__init__(
            "Unknown framework - driver/page object not recognized "
            f"({type(handle).__name__} has neither get_screenshot_as_png nor screenshot)"
        )


# Tunnel errors


class TunnelError(HarnessError):
    pass


class TunnelStartError(TunnelError):
    pass


class TunnelTimeoutError(TunnelStartError):
    pass


class TunnelStopError(TunnelError):
    pass
