"""Browser suites against the running app at BASE_URL."""

from vrt.pytest_plugin import (  # noqa: F401
    capturer,
    harness_config,
    pytest_sessionstart,
    screenshot_store,
    visual_router,
)
