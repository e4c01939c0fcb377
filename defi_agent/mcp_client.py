"""MCP clients for the capability server (stdio and streamable HTTP)."""

from __future__ import annotations

import asyncio
import json
import shlex
import uuid
from abc import ABC, abstractmethod
from asyncio.subprocess import Process
from typing import Any, Dict, Iterator, List, Optional

import httpx

from defi_agent.config import Settings
from defi_agent.errors import (
    CapabilityServerError,
    CapabilityServerUnavailableError,
    ConfigurationError,
    METHOD_NOT_FOUND,
    error_from_jsonrpc,
)
from defi_agent.utils.logging import get_logger
from defi_agent.utils.retry import (
    RETRYABLE_STATUS_CODES,
    RetryConfig,
    RetryableError,
    retry_async,
)

logger = get_logger(__name__)

JSONRPC_VERSION = "2.0"
DEFAULT_PROTOCOL_VERSION = "2025-03-26"
CLIENT_INFO = {
    "name": "defi-mcp-agent",
    "version": "0.1.0",
}
SESSION_HEADER = "Mcp-Session-Id"


class CapabilityClient(ABC):
    """Interface shared by the capability-server transports.

    ``call_tool`` returns the raw ``tools/call`` result; unwrapping and schema
    validation happen in :mod:`defi_agent.validation`.
    """

    name: str

    @property
    @abstractmethod
    def tools(self) -> List[Dict[str, Any]]:
        """Tools advertised by the server after initialization."""

    @abstractmethod
    async def start(self) -> None: ...

    @abstractmethod
    async def stop(self) -> None: ...

    @abstractmethod
    async def call_tool(self, method: str, params: Dict[str, Any]) -> Any: ...

    @staticmethod
    def _tool_names(response: Any) -> List[Dict[str, Any]]:
        if not isinstance(response, dict):
            return []
        return [
            t
            for t in response.get("tools", [])
            if isinstance(t, dict) and t.get("name")
        ]


class MCPClient(CapabilityClient):
    """Lightweight JSON-over-stdio client for an MCP server process."""

    def __init__(self, name: str, command: str, timeout: float = 30.0) -> None:
        self.name = name
        self.command = command
        self.timeout = timeout
        try:
            self._command_args = shlex.split(command)
        except ValueError as exc:  # pragma: no cover - invalid configuration is fatal
            raise ConfigurationError(
                f"Invalid MCP command for {name!r}: {command}"
            ) from exc
        if not self._command_args:
            raise ConfigurationError(f"Empty MCP command for {name!r}")
        self._command_repr = " ".join(self._command_args)
        self.process: Optional[Process] = None
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._stderr_task: Optional[asyncio.Task[None]] = None
        self._init_lock = asyncio.Lock()
        self._lock = asyncio.Lock()
        self._pending: Dict[str, asyncio.Future[Any]] = {}
        self._initialized = False
        self._tools: List[Dict[str, Any]] = []

    @property
    def tools(self) -> List[Dict[str, Any]]:
        return self._tools

    async def start(self) -> None:
        """Launch the MCP server process if it is not already running."""
        if self.process and self.process.returncode is None:
            await self._ensure_initialized()
            return

        logger.info("starting_mcp_server", name=self.name, command=self._command_repr)
        try:
            self.process = await asyncio.create_subprocess_exec(
                *self._command_args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=1_048_576,
            )
        except OSError as exc:
            raise CapabilityServerUnavailableError(
                f"Could not start capability server {self.name}: {exc}"
            ) from exc
        if self.process.returncode is not None:
            code = self.process.returncode
            await self.stop()
            raise CapabilityServerUnavailableError(
                f"Capability server {self.name} exited immediately with code {code}"
            )
        self._reader_task = asyncio.create_task(self._read_stdout())
        self._stderr_task = asyncio.create_task(self._log_stderr())
        await self._ensure_initialized()

    async def stop(self) -> None:
        """Terminate the process gracefully."""
        if not self.process:
            return
        logger.info("stopping_mcp_server", name=self.name)
        if self.process.returncode is None:
            self.process.terminate()
            try:
                await asyncio.wait_for(self.process.wait(), timeout=5)
            except asyncio.TimeoutError:
                logger.warning("mcp_terminate_timeout", name=self.name)
                self.process.kill()
                await self.process.wait()

        for task in (self._reader_task, self._stderr_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reader_task = None
        self._stderr_task = None

        self._fail_pending(f"Capability server '{self.name}' stopped.")
        self._initialized = False
        self.process = None

    async def _read_stdout(self) -> None:
        process = self.process
        if not process or not process.stdout:
            return

        try:
            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                try:
                    payload = json.loads(line.decode("utf-8").strip())
                except json.JSONDecodeError as exc:
                    logger.error(
                        "invalid_mcp_payload",
                        name=self.name,
                        error=str(exc),
                        line=line.decode(errors="replace"),
                    )
                    continue

                if (
                    isinstance(payload, dict)
                    and "id" in payload
                    and ("result" in payload or "error" in payload)
                ):
                    self._handle_response(payload)
                    continue

                if isinstance(payload, dict) and "method" in payload:
                    try:
                        await self._handle_request_or_notification(payload)
                    except (OSError, CapabilityServerError) as exc:
                        logger.error(
                            "mcp_message_handler_failed", name=self.name, error=str(exc)
                        )
                    continue

                logger.warning(
                    "unexpected_mcp_message", name=self.name, payload=payload
                )
        finally:
            exit_code = process.returncode
            if exit_code is not None:
                logger.info("mcp_process_exited", name=self.name, returncode=exit_code)
            if self._pending:
                message = f"Capability server '{self.name}' stopped before replying."
                if exit_code is not None:
                    message += f" Exit code: {exit_code}."
                self._fail_pending(message)
            self._initialized = False

    async def _log_stderr(self) -> None:
        if not self.process or not self.process.stderr:
            return
        while True:
            line = await self.process.stderr.readline()
            if not line:
                break
            logger.debug(
                "mcp_stderr", name=self.name, message=line.decode(errors="replace").strip()
            )

    async def call_tool(self, method: str, params: Dict[str, Any]) -> Any:
        """Invoke a tool and return the raw ``tools/call`` result.

        Raises:
            CapabilityServerUnavailableError: the process is gone or the call
                exceeded the configured timeout.
            CapabilityServerError: the server answered with a JSON-RPC error.
        """
        await self.start()
        if not self.process or self.process.returncode is not None:
            code = self.process.returncode if self.process else None
            await self.stop()
            raise CapabilityServerUnavailableError(
                f"Capability server {self.name} exited with code {code}"
            )

        logger.info("mcp_tool_call", name=self.name, tool=method)
        try:
            return await asyncio.wait_for(
                self._send_request(
                    "tools/call", {"name": method, "arguments": params or {}}
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("mcp_tool_timeout", name=self.name, tool=method)
            raise CapabilityServerUnavailableError(
                f"Capability server {self.name} did not answer {method} "
                f"within {self.timeout:g}s"
            ) from exc

    def _fail_pending(self, message: str) -> None:
        for request_id, future in list(self._pending.items()):
            self._pending.pop(request_id, None)
            if not future.done():
                future.set_exception(CapabilityServerUnavailableError(message))

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return

            try:
                await asyncio.wait_for(
                    self._send_request(
                        "initialize",
                        {
                            "protocolVersion": DEFAULT_PROTOCOL_VERSION,
                            "capabilities": {"tools": {}},
                            "clientInfo": CLIENT_INFO,
                        },
                    ),
                    timeout=self.timeout,
                )
                await self._send_notification("notifications/initialized", {})
            except (asyncio.TimeoutError, CapabilityServerError) as exc:
                await self.stop()
                raise CapabilityServerUnavailableError(
                    f"Capability server {self.name} failed to initialize: {exc}"
                ) from exc

            try:
                tools_response = await asyncio.wait_for(
                    self._send_request("tools/list", {}), timeout=self.timeout
                )
                self._tools = self._tool_names(tools_response)
                if self._tools:
                    logger.info(
                        "mcp_tools_available",
                        name=self.name,
                        tools=[t["name"] for t in self._tools],
                    )
            except (asyncio.TimeoutError, CapabilityServerError) as exc:
                logger.warning("mcp_list_tools_failed", name=self.name, error=str(exc))

            self._initialized = True

    async def _handle_request_or_notification(self, payload: Dict[str, Any]) -> None:
        method = payload.get("method")
        if method == "ping" and "id" in payload:
            await self._send_response(payload["id"], {})
            return

        if "id" in payload:
            await self._send_error_response(
                payload["id"],
                code=METHOD_NOT_FOUND,
                message=f"Unsupported request method '{method}' from MCP server.",
            )
            return

        logger.debug("mcp_notification_ignored", name=self.name, method=method)

    def _handle_response(self, payload: Dict[str, Any]) -> None:
        req_id_raw = payload.get("id")
        if req_id_raw is None:
            logger.warning("missing_request_id", name=self.name, payload=payload)
            return
        req_id = str(req_id_raw)
        future = self._pending.pop(req_id, None)
        if not future:
            logger.warning("no_pending_future", name=self.name, request_id=req_id)
            return
        if future.done():
            return

        if "error" in payload:
            future.set_exception(error_from_jsonrpc(payload["error"]))
        else:
            future.set_result(payload.get("result"))

    async def _send_request(
        self, method: str, params: Optional[Dict[str, Any]] = None
    ) -> Any:
        request_id = str(uuid.uuid4())
        message: Dict[str, Any] = {
            "jsonrpc": JSONRPC_VERSION,
            "id": request_id,
            "method": method,
        }
        if params is not None:
            message["params"] = params

        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()

        async with self._lock:
            self._pending[request_id] = future
            try:
                await self._write_locked(message)
            except (OSError, CapabilityServerUnavailableError) as exc:
                self._pending.pop(request_id, None)
                raise CapabilityServerUnavailableError(
                    f"Capability server {self.name} is unavailable: {exc}"
                ) from exc

        try:
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def _send_notification(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> None:
        async with self._lock:
            await self._write_locked(
                {
                    "jsonrpc": JSONRPC_VERSION,
                    "method": method,
                    **({"params": params} if params is not None else {}),
                }
            )

    async def _send_response(
        self,
        request_id: Any,
        result: Optional[Dict[str, Any]] = None,
    ) -> None:
        async with self._lock:
            await self._write_locked(
                {
                    "jsonrpc": JSONRPC_VERSION,
                    "id": request_id,
                    "result": result or {},
                }
            )

    async def _send_error_response(
        self, request_id: Any, code: int, message: str
    ) -> None:
        async with self._lock:
            await self._write_locked(
                {
                    "jsonrpc": JSONRPC_VERSION,
                    "id": request_id,
                    "error": {"code": code, "message": message},
                }
            )

    async def _write_locked(self, message: Dict[str, Any]) -> None:
        if not self.process or not self.process.stdin:
            raise CapabilityServerUnavailableError(
                f"Capability server {self.name} is not running"
            )
        data = (json.dumps(message) + "\n").encode("utf-8")
        self.process.stdin.write(data)
        await self.process.stdin.drain()


class HTTPMCPClient(CapabilityClient):
    """Streamable-HTTP MCP client.

    Every JSON-RPC message is POSTed to a single endpoint. The server answers
    with plain JSON or an SSE stream; the session id it hands out on
    ``initialize`` is echoed on later requests. 429 and 5xx answers are retried
    with backoff, connection errors and timeouts are not.
    """

    def __init__(
        self,
        name: str,
        url: str,
        timeout: float = 30.0,
        retry_config: Optional[RetryConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.name = name
        self.url = url
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig()
        self._client = client
        self._owns_client = client is None
        self._session_id: Optional[str] = None
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._tools: List[Dict[str, Any]] = []

    @property
    def tools(self) -> List[Dict[str, Any]]:
        return self._tools

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    async def start(self) -> None:
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            if self._client is None:
                self._client = httpx.AsyncClient(timeout=self.timeout)
            logger.info("connecting_mcp_server", name=self.name, url=self.url)
            await self._request(
                "initialize",
                {
                    "protocolVersion": DEFAULT_PROTOCOL_VERSION,
                    "capabilities": {"tools": {}},
                    "clientInfo": CLIENT_INFO,
                },
            )
            await self._notify("notifications/initialized", {})
            try:
                self._tools = self._tool_names(await self._request("tools/list", {}))
            except CapabilityServerError as exc:
                logger.warning("mcp_list_tools_failed", name=self.name, error=str(exc))
            self._initialized = True

    async def stop(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._session_id = None
        self._initialized = False

    async def call_tool(self, method: str, params: Dict[str, Any]) -> Any:
        await self.start()
        logger.info("mcp_tool_call", name=self.name, tool=method)
        try:
            return await asyncio.wait_for(
                self._request(
                    "tools/call", {"name": method, "arguments": params or {}}
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("mcp_tool_timeout", name=self.name, tool=method)
            raise CapabilityServerUnavailableError(
                f"Capability server {self.name} did not answer {method} "
                f"within {self.timeout:g}s"
            ) from exc

    async def _request(self, method: str, params: Dict[str, Any]) -> Any:
        request_id = str(uuid.uuid4())
        message = {
            "jsonrpc": JSONRPC_VERSION,
            "id": request_id,
            "method": method,
            "params": params,
        }

        async def attempt() -> httpx.Response:
            return await self._post(message)

        try:
            response = await retry_async(
                attempt, self.retry_config, description=f"{self.name}.{method}"
            )
        except RetryableError as exc:
            raise CapabilityServerUnavailableError(
                f"Capability server {self.name} is unavailable: {exc}"
            ) from exc

        session_id = response.headers.get(SESSION_HEADER)
        if session_id:
            self._session_id = session_id

        payload = self._parse_body(response, request_id)
        if "error" in payload:
            raise error_from_jsonrpc(payload["error"])
        return payload.get("result")

    async def _notify(self, method: str, params: Dict[str, Any]) -> None:
        await self._post({"jsonrpc": JSONRPC_VERSION, "method": method, "params": params})

    async def _post(self, message: Dict[str, Any]) -> httpx.Response:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        headers = {
            "Accept": "application/json, text/event-stream",
            "Content-Type": "application/json",
        }
        if self._session_id:
            headers[SESSION_HEADER] = self._session_id
        try:
            response = await self._client.post(self.url, json=message, headers=headers)
        except httpx.HTTPError as exc:
            raise CapabilityServerUnavailableError(
                f"Capability server {self.name} is unreachable: {exc}"
            ) from exc

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise RetryableError(
                f"HTTP {response.status_code} from {self.url}",
                retry_after=_retry_after(response),
            )
        if response.status_code >= 400:
            raise CapabilityServerError(
                f"Capability server {self.name} returned HTTP {response.status_code}"
            )
        return response

    def _parse_body(self, response: httpx.Response, request_id: str) -> Dict[str, Any]:
        content_type = response.headers.get("content-type", "")
        if "text/event-stream" in content_type:
            messages = list(_sse_messages(response.text))
        else:
            try:
                body = response.json()
            except json.JSONDecodeError as exc:
                raise CapabilityServerError(
                    f"Capability server {self.name} sent invalid JSON: {exc}"
                ) from exc
            messages = body if isinstance(body, list) else [body]

        for message in messages:
            if isinstance(message, dict) and str(message.get("id")) == request_id:
                return message
        raise CapabilityServerError(
            f"Capability server {self.name} sent no reply for request {request_id}"
        )


def _sse_messages(text: str) -> Iterator[Any]:
    """Yield the JSON payload of every ``data:`` event in an SSE body."""
    buffer: List[str] = []
    for line in text.splitlines() + [""]:
        if line.startswith("data:"):
            buffer.append(line[5:].lstrip())
        elif not line.strip() and buffer:
            try:
                yield json.loads("\n".join(buffer))
            except json.JSONDecodeError:
                logger.warning("invalid_sse_event", data="\n".join(buffer)[:200])
            buffer = []


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def create_capability_client(settings: Settings) -> CapabilityClient:
    """Build the transport selected by configuration (HTTP wins over stdio)."""
    timeout = settings.mcp_tool_timeout_seconds
    if settings.mcp_server_url:
        return HTTPMCPClient(
            "capabilities",
            str(settings.mcp_server_url),
            timeout=timeout,
            retry_config=RetryConfig(max_retries=settings.mcp_max_retries),
        )
    if settings.mcp_server_cmd:
        return MCPClient("capabilities", settings.mcp_server_cmd, timeout=timeout)
    raise ConfigurationError(
        "Set MCP_SERVER_URL or MCP_SERVER_CMD to reach the capability server."
    )


__all__ = [
    "CapabilityClient",
    "HTTPMCPClient",
    "MCPClient",
    "create_capability_client",
]
