"""Out-of-process bridge to an external MCP tool provider.

Each call spawns its own bridge process (``mcp-remote`` by default), writes
one JSON-RPC request to its stdin and waits for the matching JSON-RPC
response on its stdout. The process is killed as soon as the response is
seen, when the deadline passes, or when the caller is done with it.
"""

from __future__ import annotations

import itertools
import json
import queue
import shlex
import subprocess
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import IO, TYPE_CHECKING, Any

from .config import config
from .exceptions import UpstreamUnavailableError
from .models import ToolResult, content_part_from_dict

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = config.get_logger(__name__)

_request_ids = itertools.count(1)
_EOF = object()
KILL_GRACE_SECONDS = 5.0


class BridgeState(Enum):
    SPAWNED = "spawned"
    AWAITING_RESPONSE = "awaiting_response"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    CRASHED = "crashed"


@dataclass
class BridgeOutcome:
    """Terminal state of one bridge call and what was observed on the way."""

    state: BridgeState
    response: dict[str, Any] | None = None
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None

    @property
    def diagnostics(self) -> str:
        return self.stdout.strip() or self.stderr.strip() or self.error or "No output"


def parse_response(line: str, request_id: int) -> dict[str, Any] | None:
    """Return the JSON-RPC response carried by ``line``, if it answers us.

    Log lines, notifications and responses to other ids are ignored.

    Returns:
        The decoded response object, or None.
    """
    line = line.strip()
    if not line.startswith("{"):
        return None
    try:
        message = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Ignoring malformed JSON-RPC frame: %s", line[:200])
        return None
    if not isinstance(message, dict) or message.get("jsonrpc") != "2.0":
        return None
    if "result" not in message and "error" not in message:
        return None
    if str(message.get("id")) != str(request_id):
        logger.debug("Ignoring JSON-RPC response for id %s", message.get("id"))
        return None
    return message


@dataclass
class BridgeCall:
    """One bounded-lifetime bridge process answering exactly one request."""

    command: list[str]
    request: dict[str, Any]
    timeout: float
    state: BridgeState | None = None
    _stdout_lines: list[str] = field(default_factory=list)
    _stderr_lines: list[str] = field(default_factory=list)
    _stderr_reader: threading.Thread | None = None

    def _transition(self, state: BridgeState) -> None:
        logger.debug("Bridge call %s: %s", self.request.get("id"), state.value)
        self.state = state

    @staticmethod
    def _pump(stream: IO[str], sink: queue.Queue) -> None:
        try:
            for line in stream:
                sink.put(line)
        except (OSError, ValueError):
            pass
        finally:
            sink.put(_EOF)

    def _collect_stderr(self, stream: IO[str]) -> None:
        try:
            for line in stream:
                self._stderr_lines.append(line)
        except (OSError, ValueError):
            pass

    def run(self) -> BridgeOutcome:
        """Drive the call to a terminal state.

        Returns:
            BridgeOutcome in RESOLVED, TIMED_OUT or CRASHED state.
        """
        try:
            process = subprocess.Popen(  # noqa: S603
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as exc:
            logger.exception("Unable to start MCP bridge %s", self.command[0])
            self._transition(BridgeState.CRASHED)
            return BridgeOutcome(state=BridgeState.CRASHED, error=str(exc))

        self._transition(BridgeState.SPAWNED)
        lines: queue.Queue = queue.Queue()
        stdout_reader = threading.Thread(
            target=self._pump, args=(process.stdout, lines), daemon=True
        )
        self._stderr_reader = threading.Thread(
            target=self._collect_stderr, args=(process.stderr,), daemon=True
        )
        stdout_reader.start()
        self._stderr_reader.start()

        try:
            return self._await_response(process, lines)
        finally:
            self._terminate(process)
            self._stderr_reader.join(timeout=1.0)

    def _await_response(
        self, process: subprocess.Popen, lines: queue.Queue
    ) -> BridgeOutcome:
        deadline = time.monotonic() + self.timeout
        try:
            process.stdin.write(json.dumps(self.request) + "\n")
            process.stdin.flush()
        except OSError:
            # The bridge died before reading; its exit is picked up below.
            logger.warning("MCP bridge closed its input before the request was sent")

        self._transition(BridgeState.AWAITING_RESPONSE)
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return self._outcome(BridgeState.TIMED_OUT)
            try:
                line = lines.get(timeout=remaining)
            except queue.Empty:
                return self._outcome(BridgeState.TIMED_OUT)

            if line is _EOF:
                try:
                    returncode = process.wait(timeout=max(remaining, 0.1))
                except subprocess.TimeoutExpired:
                    return self._outcome(BridgeState.TIMED_OUT)
                self._stderr_reader.join(timeout=1.0)
                return self._outcome(BridgeState.CRASHED, returncode=returncode)

            self._stdout_lines.append(line)
            message = parse_response(line, self.request["id"])
            if message is not None:
                return self._outcome(BridgeState.RESOLVED, response=message)

    def _outcome(
        self,
        state: BridgeState,
        *,
        response: dict[str, Any] | None = None,
        returncode: int | None = None,
    ) -> BridgeOutcome:
        self._transition(state)
        return BridgeOutcome(
            state=state,
            response=response,
            returncode=returncode,
            stdout="".join(self._stdout_lines),
            stderr="".join(self._stderr_lines),
        )

    @staticmethod
    def _terminate(process: subprocess.Popen) -> None:
        if process.poll() is None:
            process.kill()
            try:
                process.wait(timeout=KILL_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                logger.warning("MCP bridge process %s did not exit", process.pid)
        for stream in (process.stdin, process.stdout, process.stderr):
            if stream is None:
                continue
            try:
                stream.close()
            except OSError:
                pass


class McpBridge:
    """Executes external tool calls through a subprocess bridge."""

    def __init__(
        self,
        server_url: str | None = None,
        auth_token: str | None = None,
        command: Sequence[str] | str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Configure the bridge.

        Args:
            server_url: External tool provider URL. If None, uses
                config.MCP_SERVER_URL.
            auth_token: Optional bearer credential. If None, uses
                config.MCP_AUTH_TOKEN.
            command: Bridge program and leading arguments. If None, uses
                config.MCP_BRIDGE_COMMAND.
            timeout: Seconds to wait for a response. If None, uses
                config.MCP_TIMEOUT.
        """
        self.server_url = server_url or config.MCP_SERVER_URL
        self.auth_token = auth_token if auth_token is not None else config.MCP_AUTH_TOKEN
        command = command if command is not None else config.MCP_BRIDGE_COMMAND
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self.timeout = timeout if timeout is not None else config.MCP_TIMEOUT

    def build_command(self) -> list[str]:
        args = [*self.command, self.server_url]
        if self.auth_token:
            args += ["--header", f"Authorization: Bearer {self.auth_token}"]
        return args

    def request(self, method: str, params: dict[str, Any]) -> BridgeOutcome:
        """Send one JSON-RPC request through a fresh bridge process.

        Returns:
            The terminal outcome of the call.
        """
        request = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(_request_ids),
        }
        started = time.monotonic()
        outcome = BridgeCall(
            command=self.build_command(), request=request, timeout=self.timeout
        ).run()
        logger.info(
            "MCP %s finished as %s in %.2fs",
            method,
            outcome.state.value,
            time.monotonic() - started,
        )
        return outcome

    def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Execute an external tool.

        Returns:
            The tool result; every failure is reported as an error result.
        """
        logger.info("MCP bridge executing tool %s", name)
        outcome = self.request("tools/call", {"name": name, "arguments": arguments})

        if outcome.state is BridgeState.TIMED_OUT:
            return ToolResult.from_text(
                "MCP execution timed out - no response received from the tool server",
                is_error=True,
            )
        if outcome.state is BridgeState.CRASHED:
            if outcome.returncode is None:
                return ToolResult.from_text(
                    f"MCP Process Error: {outcome.diagnostics}", is_error=True
                )
            return ToolResult.from_text(
                f"MCP execution completed with code {outcome.returncode}. "
                f"Output: {outcome.diagnostics}",
                is_error=outcome.returncode != 0,
            )
        return self._result_from_response(outcome.response or {})

    @staticmethod
    def _result_from_response(message: dict[str, Any]) -> ToolResult:
        if "error" in message:
            error = message["error"] or {}
            detail = error.get("message") if isinstance(error, dict) else str(error)
            return ToolResult.from_text(f"MCP Error: {detail}", is_error=True)

        result = message.get("result")
        if isinstance(result, dict) and "content" in result:
            raw_parts = result["content"]
            if not isinstance(raw_parts, list):
                raw_parts = [raw_parts]
            parts = [
                content_part_from_dict(part)
                if isinstance(part, dict)
                else content_part_from_dict({"type": "text", "text": str(part)})
                for part in raw_parts
            ]
            return ToolResult(content=parts, is_error=bool(result.get("isError")))

        text = result if isinstance(result, str) else json.dumps(result)
        return ToolResult.from_text(text)

    def list_tools(self) -> list[dict[str, Any]]:
        """Discover the tools offered by the external provider.

        Returns:
            Raw tool descriptions with name, description and inputSchema.

        Raises:
            UpstreamUnavailableError: If the bridge does not return a tool list.
        """
        outcome = self.request("tools/list", {})
        result = (outcome.response or {}).get("result")
        if outcome.state is not BridgeState.RESOLVED or not isinstance(result, dict):
            msg = f"MCP tool discovery failed ({outcome.state.value}): {outcome.diagnostics}"
            raise UpstreamUnavailableError(msg)

        tools = [
            tool
            for tool in result.get("tools") or []
            if isinstance(tool, dict) and tool.get("name")
        ]
        logger.info("Discovered %d external tools", len(tools))
        return tools
