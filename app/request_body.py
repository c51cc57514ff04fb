from starlette.requests import ClientDisconnect, Request


class BodyReadError(Exception):
    """The inbound body could not be read or decoded."""


class BodyAlreadyConsumedError(BodyReadError):
    """A second read was attempted on a body that has already been drained."""


class SingleReadBody:
    """
    Reads an inbound request body exactly once.

    Starlette caches `Request.body()`, which hides accidental double reads;
    this wrapper drains `Request.stream()` directly and refuses a second
    attempt instead of silently handing back cached or empty data.
    """

    def __init__(self, request: Request, encoding: str = "utf-8") -> None:
        self._request = request
        self._encoding = encoding
        self._consumed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    async def read_bytes(self) -> bytes:
        if self._consumed:
            raise BodyAlreadyConsumedError("request body has already been read")
        self._consumed = True

        chunks = bytearray()
        try:
            async for chunk in self._request.stream():
                chunks.extend(chunk)
        except ClientDisconnect as exc:
            raise BodyReadError("client disconnected while sending the body") from exc
        except RuntimeError as exc:
            # Starlette raises RuntimeError("Stream consumed") on a drained stream.
            raise BodyAlreadyConsumedError(str(exc)) from exc
        return bytes(chunks)

    async def read_text(self) -> str:
        data = await self.read_bytes()
        try:
            return data.decode(self._encoding)
        except UnicodeDecodeError as exc:
            raise BodyReadError(f"request body is not valid {self._encoding}") from exc


__all__ = ["BodyAlreadyConsumedError", "BodyReadError", "SingleReadBody"]
