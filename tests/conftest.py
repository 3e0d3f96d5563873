from collections.abc import Iterator

import pytest
import structlog


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    # The CLI configures structlog globally with the (test-captured) stderr;
    # restore defaults so later tests don't log to a closed stream.
    yield
    structlog.reset_defaults()
