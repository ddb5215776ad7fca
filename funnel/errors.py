class ConsoleError(Exception):
    """Base class for every failure the console reports."""


class FetchError(ConsoleError):
    """The request never produced an HTTP response (refused, timed out, DNS...)."""


class HttpStatusError(ConsoleError):
    """The server answered with a non-2xx status."""

    def __init__(self, status: int, url: str = ""):
        self.status = int(status)
        self.url = url
        where = f" from {url}" if url else ""
        super().__init__(f"HTTP {self.status}{where}")


class DecodeError(ConsoleError):
    """The response body is not JSON or does not have the expected shape."""


class ContractViolation(DecodeError):
    """A response is missing an entry for one of the known lines."""

    def __init__(self, what: str, missing: list[str]):
        self.missing = list(missing)
        super().__init__(f"{what} is missing lines: {', '.join(self.missing)}")
