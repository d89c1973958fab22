"""Incremental decoding of Server-Sent-Events chat streams.

Byte chunks arrive with arbitrary boundaries: a frame may span several
chunks, one chunk may hold several frames, and a multi-byte UTF-8 character
may be split in two.  :class:`StreamDecoder` carries both the text decoder
state and the partial trailing line across chunks.

Frame handling:
  - lines end in LF, CRLF or a bare CR
  - only ``data:`` lines are frames; everything else is ignored
  - ``[DONE]`` ends decoding, even mid-chunk
  - empty payloads are keep-alives and are skipped
  - payloads that are not JSON objects are dropped (or raised, see
    ``decode_errors``) without ending the stream
"""

from __future__ import annotations

import codecs
import inspect
import json
import logging
import re
from typing import Any, AsyncIterable, AsyncIterator, Callable, Iterator

from copilot_sdk.cancellation import CancellationToken, run_cancellable
from copilot_sdk.errors import StreamDecodeError
from copilot_sdk.types import StreamChunk

_logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
_LINE_BREAK = re.compile(r"\r\n|\r|\n")

DecodeErrorCallback = Callable[[str, Exception], Any]


class StreamDecoder:
    """Turn SSE bytes into :class:`StreamChunk` objects.

    Parameters
    ----------
    decode_errors:
        ``"drop"`` (default) skips malformed payloads; ``"raise"`` raises
        :class:`StreamDecodeError`.
    on_decode_error:
        Optional ``(payload, exc)`` callback invoked for each dropped payload.
        It may be a coroutine function when used through :meth:`decode`;
        :meth:`feed` closes such coroutines unawaited and logs a warning.
    """

    def __init__(
        self,
        decode_errors: str = "drop",
        on_decode_error: DecodeErrorCallback | None = None,
        encoding: str = "utf-8",
    ) -> None:
        if decode_errors not in ("drop", "raise"):
            raise ValueError(f"decode_errors must be 'drop' or 'raise', not {decode_errors!r}")
        self.decode_errors = decode_errors
        self._on_decode_error = on_decode_error
        self._text_decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._pending: list[Any] = []
        self._started = False
        self.finished = False
        self.saw_terminator = False
        self.dropped = 0

    # ------------------------------------------------------------------
    # Sync core
    # ------------------------------------------------------------------

    def feed(self, data: bytes) -> list[StreamChunk]:
        """Consume one byte chunk and return the chunks it completes."""
        return list(self._iter_feed(data))

    def _iter_feed(self, data: bytes, final: bool = False) -> Iterator[StreamChunk]:
        if self.finished:
            return
        text = self._buffer + self._text_decoder.decode(data, final)
        held = ""
        # A trailing CR may be the first half of a CRLF split across chunks.
        if text.endswith("\r") and not final:
            text, held = text[:-1], "\r"
        lines = _LINE_BREAK.split(text)
        self._buffer = lines.pop() + held

        for line in lines:
            if not line.startswith(DATA_PREFIX):
                continue
            payload = line[len(DATA_PREFIX):].strip()
            if payload == DONE_SENTINEL:
                self.finished = True
                self.saw_terminator = True
                self._buffer = ""
                return
            if not payload:
                continue
            chunk = self._parse(payload)
            if chunk is not None:
                yield chunk

    def close(self) -> list[StreamChunk]:
        """Mark end of input and return chunks completed by a held-back CR.

        A trailing line without any line break is discarded.
        """
        chunks = list(self._iter_feed(b"", final=True))
        if self._buffer:
            _logger.debug("Discarding %d bytes of incomplete frame", len(self._buffer))
        self._buffer = ""
        self.finished = True
        return chunks

    def _parse(self, payload: str) -> StreamChunk | None:
        try:
            data = json.loads(payload)
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        except ValueError as exc:
            self._bad_payload(payload, exc)
            return None
        return StreamChunk.from_payload(data)

    def _bad_payload(self, payload: str, exc: Exception) -> None:
        if self.decode_errors == "raise":
            raise StreamDecodeError(f"Malformed stream frame: {exc}", payload) from exc
        self.dropped += 1
        _logger.debug("Dropping malformed stream frame: %s", exc)
        if self._on_decode_error is None:
            return
        result = self._on_decode_error(payload, exc)
        if not inspect.isawaitable(result):
            return
        if self._started:
            self._pending.append(result)
            return
        # feed() has no event loop to run the callback on.
        if inspect.iscoroutine(result):
            result.close()
        _logger.warning(
            "on_decode_error returned an awaitable from feed(); use decode() for async callbacks",
        )

    # ------------------------------------------------------------------
    # Async driver
    # ------------------------------------------------------------------

    async def decode(
        self,
        source: AsyncIterable[bytes],
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Yield chunks from *source* until ``[DONE]`` or end of input.

        A decoder is single-use; a new stream needs a new decoder.
        """
        if self._started:
            raise RuntimeError("StreamDecoder instances cannot be reused")
        self._started = True

        iterator = source.__aiter__()
        while not self.finished:
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                data = await run_cancellable(iterator.__anext__(), cancel)
            except StopAsyncIteration:
                for chunk in self.close():
                    await self._drain_pending()
                    yield chunk
                await self._drain_pending()
                break
            for chunk in self._iter_feed(data):
                await self._drain_pending()
                yield chunk
            await self._drain_pending()

    async def _drain_pending(self) -> None:
        while self._pending:
            await self._pending.pop(0)
