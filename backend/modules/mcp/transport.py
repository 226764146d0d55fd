"""
MCP transports: client sessions to one tool server.

Three implementations share the same start / send / close contract:

- StdioTransport: spawns a local command through the MCP SDK's
  ``stdio_client``.
- NpxTransport: StdioTransport for package-runner (``npx ...``) command
  lines, with the remote install check disabled.
- SseTransport: connects to an HTTP server-sent-events endpoint through the
  SDK's ``sse_client``.

Each transport owns one ``mcp.ClientSession``. JSON-RPC framing, request
id correlation, per-request timeouts and answering server ``ping`` requests
are handled by the session. The SDK's stream contexts live in a single
background task for the whole life of the channel; callers only see
``start()``, ``send()``/``call()`` and ``close()``.
"""

import asyncio
import os
import re
import shlex
import sys
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple, Type, TypeVar
from urllib.parse import urlparse

import anyio
import httpx
from mcp import ClientSession, StdioServerParameters, types
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError as SdkMcpError
from pydantic import ValidationError

from models.mcp_server import McpConnectionType, infer_connection_type
from modules.mcp.errors import McpError, RequestTimeoutError, TransportError, UnsupportedEndpointError
from utils.logging import get_logger

logger = get_logger("mcp.transport")
stderr_logger = get_logger("mcp.transport.stderr")

DEFAULT_REQUEST_TIMEOUT = 60.0
DEFAULT_SSE_CONNECT_TIMEOUT = 10.0
DEFAULT_SSE_READ_TIMEOUT = 300.0
DEFAULT_START_TIMEOUT = 10.0

NPX_SKIP_INSTALL_FLAG = "--no-install"
NPX_SKIP_INSTALL_FLAGS = {"--no-install", "--no", "-n"}

_URL_SCHEME = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.-]*)://")

CloseCallback = Callable[[Optional[Exception]], None]
SessionOperation = Callable[[ClientSession], Awaitable[Any]]
ResultT = TypeVar("ResultT")

_STREAM_ERRORS = (anyio.ClosedResourceError, anyio.BrokenResourceError, anyio.EndOfStream)


def root_cause(exc: BaseException) -> BaseException:
    """Unwrap single-member exception groups raised by the SDK's task groups."""
    while isinstance(exc, BaseExceptionGroup) and len(exc.exceptions) == 1:
        exc = exc.exceptions[0]
    return exc


class McpTransport(ABC):
    """
    Channel to one MCP server, backed by an ``mcp.ClientSession``.

    Subclasses implement ``_open_streams()``, an async context manager that
    yields the SDK ``(read_stream, write_stream)`` pair.

    ``on_close`` is called exactly once when the channel goes away: with the
    error when the server side closes it, with None after ``close()``.
    """

    def __init__(
        self,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        on_close: Optional[CloseCallback] = None,
        client_info: Optional[types.Implementation] = None,
        start_timeout: float = DEFAULT_START_TIMEOUT,
    ):
        self.request_timeout = request_timeout
        self.on_close = on_close
        self.client_info = client_info
        self.start_timeout = start_timeout
        self._session: Optional[ClientSession] = None
        self._task: Optional[asyncio.Task] = None
        self._ready = asyncio.Event()
        self._stop = asyncio.Event()
        self._lost = asyncio.Event()
        self._failure: Optional[BaseException] = None
        self._close_reason: Optional[Exception] = None
        self._closed = False
        self._notified = False

    @abstractmethod
    def _open_streams(self):
        """Return an async context manager yielding the SDK read/write streams."""

    @property
    def describe(self) -> str:
        return type(self).__name__

    @property
    def is_alive(self) -> bool:
        """Whether the channel can currently carry requests."""
        return self._session is not None and not self._closed and not self._lost.is_set()

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def start(self) -> None:
        """
        Open the channel.

        Raises:
            TransportError: If the streams cannot be opened in time
        """
        if self.is_alive:
            return
        if self._task is not None or self._closed:
            raise TransportError(f"{self.describe} cannot be restarted; create a new transport")

        self._task = asyncio.create_task(self._run(), name=f"mcp-{self.describe}")
        ready = asyncio.ensure_future(self._ready.wait())
        try:
            done, _ = await asyncio.wait(
                {ready, self._task}, timeout=self.start_timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            ready.cancel()

        if self._ready.is_set():
            if self.is_alive:
                logger.info(f"{self.describe} started")
                return
            raise TransportError(str(self._close_reason or self._failure_message(self._failure)))
        if self._task in done:
            raise TransportError(self._failure_message(self._failure))

        await self._abort()
        raise TransportError(f"Timed out after {self.start_timeout:g}s opening {self.describe}")

    async def _run(self) -> None:
        """Own the SDK contexts until ``close()`` or the server side goes away."""
        try:
            async with self._open_streams() as (read_stream, write_stream):
                inbound_send, inbound_recv = anyio.create_memory_object_stream(0)
                async with anyio.create_task_group() as tg:
                    tg.start_soon(self._pump, read_stream, inbound_send)
                    async with ClientSession(
                        inbound_recv,
                        write_stream,
                        read_timeout_seconds=timedelta(seconds=self.request_timeout),
                        client_info=self.client_info,
                        logging_callback=self._on_server_log,
                        message_handler=self._on_incoming,
                    ) as session:
                        self._session = session
                        self._ready.set()
                        await self._stop.wait()
                    tg.cancel_scope.cancel()
        except Exception as exc:
            cause = root_cause(exc)
            self._failure = cause
            if self._ready.is_set():
                self._mark_lost(TransportError(f"{self.describe} failed: {cause}"))
        finally:
            self._session = None

    async def _pump(self, source, sink) -> None:
        """Forward server messages into the session and detect end of stream."""
        try:
            async for message in source:
                await sink.send(message)
        except _STREAM_ERRORS:
            pass
        finally:
            if not self._stop.is_set():
                self._mark_lost(TransportError(f"{self.describe}: server closed the connection"))
            sink.close()

    def _mark_lost(self, error: Exception) -> None:
        if self._closed or self._lost.is_set():
            return
        self._close_reason = error
        self._lost.set()
        self._stop.set()
        logger.warning(f"{self.describe} channel lost: {error}")
        self._notify_closed(error)

    def _notify_closed(self, error: Optional[Exception]) -> None:
        if self._notified:
            return
        self._notified = True
        callback = self.on_close
        if callback is None:
            return
        try:
            callback(error)
        except Exception as exc:
            logger.error(f"{self.describe} close callback failed: {exc}", exc_info=True)

    def _failure_message(self, error: Optional[BaseException]) -> str:
        return f"Failed to open {self.describe}: {error}"

    async def _abort(self) -> None:
        """Cancel a start that never became ready."""
        self._closed = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def close(self) -> None:
        """Close the session and release the channel (idempotent)."""
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        task = self._task
        if task is not None and not task.done():
            if self._ready.is_set():
                await asyncio.gather(task, return_exceptions=True)
            else:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        self._notify_closed(None)
        logger.info(f"{self.describe} closed")

    # ── Requests ──────────────────────────────────────────────────────────

    async def call(self, operation: SessionOperation) -> Any:
        """
        Run one session operation, failing fast if the channel goes away.

        Raises:
            TransportError: If the channel is down or is lost mid-request
            RequestTimeoutError: If the server does not answer in time
            McpError: If the server answers with a JSON-RPC error
        """
        session = self._session
        if session is None or not self.is_alive:
            raise TransportError(f"{self.describe} is not running")

        pending = asyncio.ensure_future(operation(session))
        lost = asyncio.ensure_future(self._lost.wait())
        try:
            await asyncio.wait({pending, lost}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            lost.cancel()
            if not pending.done():
                pending.cancel()

        if not pending.done() or pending.cancelled():
            raise TransportError(str(self._close_reason or f"{self.describe} closed"))

        try:
            return pending.result()
        except SdkMcpError as exc:
            raise self._translate(exc.error) from exc
        except _STREAM_ERRORS as exc:
            raise TransportError(f"{self.describe} closed: {exc!r}") from exc
        except ValidationError as exc:
            raise McpError(f"Malformed response from {self.describe}: {exc}") from exc

    async def send(
        self,
        request: types.ClientRequest,
        result_type: Type[ResultT],
        timeout: Optional[float] = None,
    ) -> ResultT:
        """
        Send one request and wait for the response correlated with it.

        Args:
            request: Typed MCP request
            result_type: Result model the response is validated into
            timeout: Seconds to wait; defaults to ``request_timeout``
        """
        read_timeout = timedelta(seconds=timeout) if timeout is not None else None
        return await self.call(
            lambda session: session.send_request(request, result_type, request_read_timeout_seconds=read_timeout)
        )

    def _translate(self, error: types.ErrorData) -> McpError:
        if error.code == httpx.codes.REQUEST_TIMEOUT:
            return RequestTimeoutError(error.message, code=error.code)
        if not self.is_alive:
            return TransportError(str(self._close_reason or error.message), code=error.code)
        return McpError(f"MCP error {error.code}: {error.message}", code=error.code, data=error.data)

    # ── Server-initiated traffic ──────────────────────────────────────────

    async def _on_server_log(self, params: types.LoggingMessageNotificationParams) -> None:
        logger.debug(f"{self.describe} log", server_level=params.level, source=params.logger, data=params.data)

    async def _on_incoming(self, message: Any) -> None:
        if isinstance(message, Exception):
            logger.warning(f"{self.describe}: discarded inbound message: {message}")


# ── Stdio ─────────────────────────────────────────────────────────────────


class StdioTransport(McpTransport):
    """
    Communicate with an MCP server over a child process's stdin/stdout.

    stderr is forwarded to the diagnostic log and never fails the channel.
    """

    def __init__(
        self,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.command = command
        self.args = list(args or [])
        self.env = env or {}
        self.cwd = cwd

    @property
    def describe(self) -> str:
        return f"stdio[{os.path.basename(self.command)}]"

    def server_parameters(self) -> StdioServerParameters:
        return StdioServerParameters(
            command=self.command,
            args=self.args,
            env={**os.environ, **self.env},
            cwd=self.cwd,
        )

    @asynccontextmanager
    async def _open_streams(self) -> AsyncIterator[Tuple[Any, Any]]:
        if os.name == "nt":
            async with stdio_client(self.server_parameters()) as streams:
                yield streams
            return

        read_fd, write_fd = os.pipe()
        errlog = os.fdopen(write_fd, "w")
        forwarder = asyncio.create_task(self._forward_stderr(read_fd))
        try:
            async with stdio_client(self.server_parameters(), errlog=errlog) as streams:
                yield streams
        finally:
            errlog.close()
            await asyncio.wait({forwarder}, timeout=1.0)
            forwarder.cancel()

    async def _forward_stderr(self, read_fd: int) -> None:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        pipe, _ = await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader), os.fdopen(read_fd, "rb")
        )
        try:
            while True:
                raw = await reader.readline()
                if not raw:
                    return
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    stderr_logger.warning("MCP server stderr", transport=self.describe, line=line)
        finally:
            pipe.close()

    def _failure_message(self, error: Optional[BaseException]) -> str:
        if isinstance(error, FileNotFoundError):
            return f"MCP server command not found: {self.command}"
        return f"Failed to start {self.describe}: {error}"


def ensure_skip_install_flag(args: List[str]) -> List[str]:
    """
    Insert ``--no-install`` after the npx token unless a skip flag is present.

    Args:
        args: Full command line tokens, starting with or containing ``npx``

    Returns:
        New token list
    """
    tokens = list(args)
    try:
        npx_index = next(i for i, token in enumerate(tokens) if os.path.basename(token) in ("npx", "npx.cmd"))
    except StopIteration:
        return tokens
    if NPX_SKIP_INSTALL_FLAGS.intersection(tokens[npx_index + 1:]):
        return tokens
    tokens.insert(npx_index + 1, NPX_SKIP_INSTALL_FLAG)
    return tokens


class NpxTransport(StdioTransport):
    """Stdio transport for ``npx`` command lines."""

    def __init__(self, command_line: str, **kwargs):
        tokens = ensure_skip_install_flag(split_command_line(command_line))
        if not tokens:
            raise UnsupportedEndpointError("Empty npx command line")
        command, args = tokens[0], tokens[1:]
        if os.name == "nt" and command == "npx":
            command = "npx.cmd"
        env = {"FORCE_COLOR": "1", **kwargs.pop("env", {})}
        super().__init__(command, args, env=env, **kwargs)
        self.command_line = command_line

    @property
    def describe(self) -> str:
        return f"npx[{' '.join(self.args[-1:])}]"


# ── SSE ───────────────────────────────────────────────────────────────────


class SseTransport(McpTransport):
    """
    MCP over HTTP: inbound messages on an SSE stream, outbound via POST.

    The server announces its POST URL in an ``endpoint`` event; the channel
    is not ready until that event arrives.
    """

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        connect_timeout: float = DEFAULT_SSE_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_SSE_READ_TIMEOUT,
        httpx_client_factory: Optional[Callable[..., httpx.AsyncClient]] = None,
        **kwargs,
    ):
        kwargs.setdefault("start_timeout", connect_timeout)
        super().__init__(**kwargs)
        self.url = url
        self.headers = headers or {}
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.httpx_client_factory = httpx_client_factory

    @property
    def describe(self) -> str:
        return f"sse[{self.url}]"

    @asynccontextmanager
    async def _open_streams(self) -> AsyncIterator[Tuple[Any, Any]]:
        options: Dict[str, Any] = {
            "headers": self.headers or None,
            "timeout": self.connect_timeout,
            "sse_read_timeout": self.read_timeout,
        }
        if self.httpx_client_factory is not None:
            options["httpx_client_factory"] = self.httpx_client_factory
        async with sse_client(self.url, **options) as streams:
            yield streams


# ── Selection ─────────────────────────────────────────────────────────────


def split_command_line(command_line: str) -> List[str]:
    return shlex.split(command_line, posix=os.name != "nt")


def build_file_command(endpoint: str) -> Tuple[str, List[str]]:
    """
    Resolve a local-script endpoint into a command and arguments.

    ``.py`` scripts run with the current interpreter, ``.js``/``.mjs``/``.cjs``
    with node; anything else is parsed as a command line.
    """
    lowered = endpoint.lower()
    if lowered.endswith(".py"):
        return sys.executable, [endpoint]
    if lowered.endswith((".js", ".mjs", ".cjs")):
        return "node", [endpoint]
    tokens = split_command_line(endpoint)
    if not tokens:
        raise UnsupportedEndpointError(f"Cannot derive a command from endpoint: {endpoint!r}")
    return tokens[0], tokens[1:]


def create_transport(
    endpoint: str,
    connection_type: Optional[McpConnectionType] = None,
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    sse_connect_timeout: float = DEFAULT_SSE_CONNECT_TIMEOUT,
    sse_read_timeout: float = DEFAULT_SSE_READ_TIMEOUT,
    on_close: Optional[CloseCallback] = None,
    client_info: Optional[types.Implementation] = None,
) -> McpTransport:
    """
    Select and build the transport for a server endpoint.

    Args:
        endpoint: Script path, command line or URL
        connection_type: Explicit type; legacy untagged records pass None

    Raises:
        UnsupportedEndpointError: For empty endpoints, non-HTTP URL schemes,
            or an SSE type whose endpoint is not an HTTP URL
    """
    endpoint = (endpoint or "").strip()
    if not endpoint:
        raise UnsupportedEndpointError("MCP server endpoint is empty")

    scheme_match = _URL_SCHEME.match(endpoint)
    if scheme_match and scheme_match.group(1).lower() not in ("http", "https"):
        raise UnsupportedEndpointError(f"Unsupported endpoint scheme: {scheme_match.group(1)}://")

    if connection_type is None:
        connection_type = infer_connection_type(endpoint)

    common = {"request_timeout": request_timeout, "on_close": on_close, "client_info": client_info}

    if connection_type == McpConnectionType.SSE:
        if urlparse(endpoint).scheme.lower() not in ("http", "https"):
            raise UnsupportedEndpointError(f"SSE servers need an http(s) URL, got: {endpoint}")
        return SseTransport(endpoint, connect_timeout=sse_connect_timeout, read_timeout=sse_read_timeout, **common)

    if scheme_match:
        raise UnsupportedEndpointError(
            f"URL endpoint {endpoint} requires connection type 'sse', got '{connection_type.value}'"
        )

    if connection_type == McpConnectionType.NPX:
        return NpxTransport(endpoint, **common)

    command, args = build_file_command(endpoint)
    return StdioTransport(command, args, **common)
