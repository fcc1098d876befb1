from datetime import datetime, timedelta, timezone

import httpx

ADMIN_HEADERS = {"X-Internal-Admin-Key": "test-internal"}


class FakeClock:
    """Injectable clock; tests move time forward explicitly."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class Subscriber:
    """
    Fake subscriber endpoints behind httpx.MockTransport.

    Behaviour is keyed by host; every request is recorded.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._routes: dict[str, object] = {}
        self.transport = httpx.MockTransport(self._handle)

    def route(self, host: str, behaviour) -> None:
        # behaviour: status code, httpx.Response, exception instance or (async) callable(request)
        self._routes[host] = behaviour

    def calls_to(self, host: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == host]

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        behaviour = self._routes.get(request.url.host, 200)
        if isinstance(behaviour, int):
            return httpx.Response(behaviour, text="ok" if behaviour < 300 else "boom")
        if isinstance(behaviour, httpx.Response):
            return behaviour
        if isinstance(behaviour, Exception):
            raise behaviour
        result = behaviour(request)
        if hasattr(result, "__await__"):
            result = await result
        return result


def as_aware(value: datetime | None) -> datetime | None:
    # SQLite returns naive datetimes
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
