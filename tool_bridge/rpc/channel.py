"""
RPC Channel - Line-delimited JSON-RPC over a tool server's stdio.

One channel wraps one tool server process: requests are written to its
stdin as one JSON object per line, replies are read from its stdout.

A single reader task owns stdout and routes every reply to the pending
request with the same id, so many calls can be in flight on one channel.

Unmatched replies:
    - late reply for a request that already timed out or was cancelled:
      logged and counted
    - reply with an id no request ever used, while exactly one request is
      in flight: that request fails with ProtocolError
    - error reply with a null id (e.g. -32700 parse error): every pending
      request fails with ProtocolError
    - anything else (non-JSON noise, ambiguous ids): logged and counted

When stdout reaches EOF every pending request fails with
ChannelClosedError. Stderr is drained by its own task so a chatty server
cannot block on a full pipe.
"""

import asyncio
import json
import logging
from collections import deque
from typing import Any, Optional

from tool_bridge.core.exceptions import ChannelClosedError, ProtocolError
from tool_bridge.models.rpc import RpcRequest
from tool_bridge.observability.metrics import record_unrouted_reply

logger = logging.getLogger(__name__)

# Per-line buffer limit of subprocess pipes; tool results can be large
STREAM_LIMIT = 16 * 1024 * 1024

# Ids of requests abandoned after a timeout or cancellation, kept so their
# late replies are not mistaken for protocol violations
_ABANDONED_IDS_KEPT = 1024

_LOG_PREVIEW_CHARS = 200


class RpcChannel:
    """
    Multiplexed request/reply channel to one tool server.

    Attributes:
        address: "stdio://<pid>" for process-backed channels.
        server: Name of the tool server on the other end.

    Example:
        >>> channel = RpcChannel.for_process(process, server="fs")
        >>> channel.start()
        >>> raw = await channel.request(RpcRequest(method="ping", id=1), timeout=5.0)
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: Any,
        address: str,
        server: Optional[str] = None,
        stderr: Optional[asyncio.StreamReader] = None,
    ) -> None:
        """
        Initialize the channel.

        Args:
            reader: Stream carrying replies (the server's stdout).
            writer: Stream accepting requests (the server's stdin).
            address: Human-readable address of the peer.
            server: Tool server name, used in logs.
            stderr: Optional stream to drain into the log.
        """
        self._reader = reader
        self._writer = writer
        self._stderr = stderr
        self._address = address
        self._server = server or address

        self._pending: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._abandoned: deque[int] = deque(maxlen=_ABANDONED_IDS_KEPT)
        self._write_lock = asyncio.Lock()
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._stderr_task: Optional[asyncio.Task[None]] = None
        self._closed = False
        self._close_reason: Optional[str] = None

    @classmethod
    def for_process(
        cls, process: asyncio.subprocess.Process, server: str
    ) -> "RpcChannel":
        """Build a channel over a subprocess spawned with piped stdio."""
        if process.stdin is None or process.stdout is None:
            raise ChannelClosedError(
                f"stdio://{process.pid}", "process was spawned without stdio pipes"
            )
        return cls(
            reader=process.stdout,
            writer=process.stdin,
            address=f"stdio://{process.pid}",
            server=server,
            stderr=process.stderr,
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def address(self) -> str:
        return self._address

    @property
    def server(self) -> str:
        return self._server

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        """Requests currently awaiting a reply."""
        return len(self._pending)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the reader (and stderr drain) tasks. Idempotent."""
        if self._reader_task is not None:
            return
        self._reader_task = asyncio.create_task(
            self._read_loop(), name=f"rpc-reader-{self._server}"
        )
        if self._stderr is not None:
            self._stderr_task = asyncio.create_task(
                self._drain_stderr(), name=f"rpc-stderr-{self._server}"
            )

    async def close(self, reason: str = "channel closed") -> None:
        """
        Close the channel and fail every pending request.

        Safe to call more than once; the first reason wins.
        """
        self._mark_closed(reason)

        if not self._writer.is_closing():
            self._writer.close()

        tasks = [
            task
            for task in (self._reader_task, self._stderr_task)
            if task is not None and not task.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # =========================================================================
    # Requests
    # =========================================================================

    async def request(self, request: RpcRequest, timeout: float) -> dict[str, Any]:
        """
        Send a request and wait for the reply carrying the same id.

        Args:
            request: Envelope to send.
            timeout: Seconds to wait for the reply.

        Returns:
            The raw reply object, not yet validated.

        Raises:
            ChannelClosedError: If the channel is closed before or while waiting.
            ProtocolError: If the server answers with an unmatched or
                uncorrelated error envelope.
            asyncio.TimeoutError: If no reply arrives in time.
        """
        if self._closed:
            raise ChannelClosedError(self._address, self._close_reason or "channel closed")
        if request.id in self._pending:
            raise ValueError(f"Request id {request.id} is already in flight")

        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request.id] = future
        try:
            await self._send(request)
            return await asyncio.wait_for(future, timeout)
        finally:
            # Timeout and cancellation both release the slot; a late reply
            # for this id is then reported as unrouted
            self._pending.pop(request.id, None)
            if not future.done() or future.cancelled():
                self._abandoned.append(request.id)

    async def _send(self, request: RpcRequest) -> None:
        line = request.to_json() + "\n"
        async with self._write_lock:
            try:
                self._writer.write(line.encode("utf-8"))
                await self._writer.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise ChannelClosedError(self._address, f"write failed: {e}") from e

    # =========================================================================
    # Reader
    # =========================================================================

    async def _read_loop(self) -> None:
        reason = "tool server closed its output"
        try:
            while True:
                try:
                    line = await self._reader.readline()
                except ValueError as e:
                    # Line exceeded STREAM_LIMIT; the reader skips past it
                    logger.warning(f"{self._server}: discarding oversized reply: {e}")
                    record_unrouted_reply(self._address)
                    continue
                if not line:
                    break
                self._dispatch(line)
        except asyncio.CancelledError:
            reason = self._close_reason or "channel closed"
            raise
        finally:
            self._mark_closed(reason)

    def _dispatch(self, line: bytes) -> None:
        text = line.decode("utf-8", errors="replace").strip()
        if not text:
            return

        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            logger.warning(
                f"{self._server}: discarding non-JSON line: {text[:_LOG_PREVIEW_CHARS]}"
            )
            record_unrouted_reply(self._address)
            return

        if not isinstance(payload, dict):
            logger.warning(f"{self._server}: discarding non-object reply: {text[:_LOG_PREVIEW_CHARS]}")
            record_unrouted_reply(self._address)
            return

        request_id = payload.get("id")
        if request_id is None and "method" in payload:
            logger.debug(f"{self._server}: ignoring notification {payload.get('method')!r}")
            return

        future = None
        if isinstance(request_id, int) and not isinstance(request_id, bool):
            future = self._pending.get(request_id)

        if future is None or future.done():
            self._unmatched(payload, request_id)
            return

        future.set_result(payload)

    def _unmatched(self, payload: dict[str, Any], request_id: Any) -> None:
        """Handle a reply whose id matches no pending request."""
        record_unrouted_reply(self._address)

        if request_id is None and "error" in payload:
            error = payload["error"]
            detail = error.get("message") if isinstance(error, dict) else error
            self._fail_pending(f"Tool server replied with an uncorrelated error: {detail}")
            return

        if request_id in self._abandoned:
            logger.warning(f"{self._server}: dropping late reply for id {request_id!r}")
            return

        waiting = [f for f in self._pending.values() if not f.done()]
        if len(waiting) == 1:
            expected = next(i for i, f in self._pending.items() if f is waiting[0])
            logger.warning(
                f"{self._server}: reply id {request_id!r} does not match request id {expected}"
            )
            waiting[0].set_exception(
                ProtocolError(
                    f"Reply id {request_id!r} does not match request id {expected}"
                )
            )
            return

        logger.warning(f"{self._server}: no pending request for reply id {request_id!r}")

    def _fail_pending(self, message: str) -> None:
        if not self._pending:
            logger.warning(f"{self._server}: {message}")
            return
        logger.warning(
            f"{self._server}: failing {len(self._pending)} pending requests: {message}"
        )
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ProtocolError(message))

    def _mark_closed(self, reason: str) -> None:
        self._closed = True
        if self._close_reason is None:
            self._close_reason = reason
        if not self._pending:
            return
        logger.info(
            f"{self._server}: failing {len(self._pending)} pending requests: "
            f"{self._close_reason}"
        )
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ChannelClosedError(self._address, self._close_reason))
        self._pending.clear()

    async def _drain_stderr(self) -> None:
        assert self._stderr is not None
        while True:
            try:
                line = await self._stderr.readline()
            except ValueError:
                continue
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.debug(f"[{self._server}] {text}")
