from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from .errors import GatewayError


class RequestCounter:
    """Active in-flight request count with a ceiling.

    Everything runs on one event loop and ``slot`` does not await between the
    check and the increment, so no lock is needed.
    """

    def __init__(self, max_concurrent: int) -> None:
        self.max_concurrent = max_concurrent
        self.active = 0

    @property
    def saturated(self) -> bool:
        return self.active >= self.max_concurrent

    @contextmanager
    def slot(self) -> Iterator[int]:
        if self.saturated:
            raise GatewayError.rate_limited(
                f"too many concurrent requests (active={self.active}, max={self.max_concurrent})"
            )

        self.active += 1
        try:
            yield self.active
        finally:
            self.active -= 1
