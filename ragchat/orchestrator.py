"""Drives one conversational turn: tool decision, tool execution, streaming."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .config import config
from .exceptions import ShapeMismatchError, UpstreamUnavailableError
from .models import ASSISTANT_ROLE, SYSTEM_ROLE, TOOL_ROLE, DocumentChunk, ToolCall

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    from openai.types.chat import ChatCompletion

    from .gateway import ChatGateway, ContentStream
    from .models import ToolDefinition
    from .tools import ToolExecutor, ToolRegistry

logger = config.get_logger(__name__)

DONE_FRAME = "data: [DONE]\n\n"


class TurnState(Enum):
    START = "start"
    TOOL_DECISION = "tool_decision"
    DIRECT_STREAM = "direct_stream"
    TOOL_EXEC = "tool_exec"
    TOOL_STREAM = "tool_stream"
    DONE = "done"


@dataclass
class TurnRequest:
    """Everything one turn needs: transcript, model and session context."""

    messages: list[dict[str, Any]]
    model: str
    document_chunks: list[DocumentChunk] = field(default_factory=list)
    tooling_enabled: bool = True
    system_prompt: str | None = None

    def transcript(self) -> list[dict[str, Any]]:
        messages = [dict(message) for message in self.messages]
        if self.system_prompt:
            messages.insert(0, {"role": SYSTEM_ROLE, "content": self.system_prompt})
        return messages


@dataclass(frozen=True)
class ToolDecision:
    """The model's answer to the decision request.

    ``tool_call`` is None when the model chose not to call a tool.
    """

    tool_call: ToolCall | None = None
    assistant_message: dict[str, Any] | None = None
    ignored_calls: int = 0


@dataclass(frozen=True)
class ToolingDegraded:
    """Tool-calling could not be used for this turn."""

    reason: str


@dataclass(frozen=True)
class ToolInvoked:
    name: str
    arguments: dict[str, Any]


@dataclass(frozen=True)
class ContentDelta:
    content: str


@dataclass(frozen=True)
class TurnCompleted:
    answer: str


TurnEvent = ToolInvoked | ContentDelta | TurnCompleted


def parse_tool_arguments(raw: str | None) -> dict[str, Any]:
    """Decode the JSON arguments of a tool call.

    Returns:
        The arguments object; an empty string decodes to an empty dict.

    Raises:
        ShapeMismatchError: If the arguments are not a JSON object.
    """
    if not raw:
        return {}
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError as exc:
        msg = f"Tool call arguments are not valid JSON: {raw[:200]}"
        raise ShapeMismatchError(msg) from exc
    if not isinstance(arguments, dict):
        msg = f"Tool call arguments must be a JSON object, got {type(arguments).__name__}"
        raise ShapeMismatchError(msg)
    return arguments


def format_frame(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def sse_frames(events: Iterable[TurnEvent]) -> Iterator[str]:
    """Render turn events as server-sent event frames.

    Yields:
        ``data: <json>`` frames, then ``data: [DONE]`` once the turn completed.
    """
    for event in events:
        match event:
            case ToolInvoked(name=name, arguments=arguments):
                yield format_frame(
                    {"content": "", "function_call": {"name": name, "arguments": arguments}}
                )
            case ContentDelta(content=content):
                yield format_frame({"content": content})
            case TurnCompleted():
                yield DONE_FRAME


class PreparedTurn:
    """A turn whose final upstream stream is already open.

    ``events()`` is single-use. ``close()`` is idempotent and releases the
    upstream connection; call it when the consumer goes away early.
    """

    def __init__(
        self,
        stream: ContentStream,
        state: TurnState,
        tool_invoked: ToolInvoked | None = None,
        on_complete: Callable[[str], None] | None = None,
    ) -> None:
        self.stream = stream
        self.state = state
        self.tool_invoked = tool_invoked
        self.on_complete = on_complete
        self._completion: threading.Thread | None = None

    def events(self) -> Iterator[TurnEvent]:
        parts: list[str] = []
        try:
            if self.tool_invoked is not None:
                yield self.tool_invoked

            try:
                for content in self.stream:
                    parts.append(content)
                    yield ContentDelta(content)
            except UpstreamUnavailableError:
                logger.exception("Upstream stream failed after %d deltas", len(parts))
                return

            answer = "".join(parts)
            logger.info("Turn done (%s, %d characters)", self.state.value, len(answer))
            self.state = TurnState.DONE
            self._notify_complete(answer)
            yield TurnCompleted(answer)
        finally:
            self.close()

    def _notify_complete(self, answer: str) -> None:
        if self.on_complete is None:
            return
        self._completion = threading.Thread(
            target=self._run_on_complete,
            args=(self.on_complete, answer),
            name="turn-on-complete",
            daemon=True,
        )
        self._completion.start()

    @staticmethod
    def _run_on_complete(callback: Callable[[str], None], answer: str) -> None:
        try:
            callback(answer)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not persist the answer: %s", exc)

    def wait_for_completion(self, timeout: float | None = None) -> bool:
        """Wait for the on_complete callback, if one was started.

        Returns:
            False if the callback is still running after ``timeout``.
        """
        if self._completion is None:
            return True
        self._completion.join(timeout)
        return not self._completion.is_alive()

    def close(self) -> None:
        self.stream.close()


class CompletionOrchestrator:
    """State machine for one turn.

    START -> (TOOL_DECISION | DIRECT_STREAM) -> [TOOL_EXEC -> TOOL_STREAM] -> DONE

    Tool-calling failures never fail the turn: they degrade it to a direct
    stream over the original transcript.
    """

    def __init__(
        self,
        gateway: ChatGateway,
        registry: ToolRegistry,
        executor: ToolExecutor,
    ) -> None:
        self.gateway = gateway
        self.registry = registry
        self.executor = executor

    @staticmethod
    def _transition(state: TurnState, model: str) -> None:
        logger.info("Turn state %s (model: %s)", state.value, model)

    def decide(
        self,
        transcript: list[dict[str, Any]],
        model: str,
        tools: list[ToolDefinition],
    ) -> ToolDecision | ToolingDegraded:
        """Ask the model, without streaming, whether it wants a tool.

        Returns:
            ToolDecision (with or without a call) or ToolingDegraded.
        """
        try:
            response = self.gateway.complete(
                transcript, model, tools=[tool.to_openai() for tool in tools]
            )
        except UpstreamUnavailableError as exc:
            return ToolingDegraded(f"Tool decision request failed: {exc}")
        return self._decision_from_response(response)

    @staticmethod
    def _decision_from_response(response: ChatCompletion) -> ToolDecision | ToolingDegraded:
        if not response.choices:
            return ToolingDegraded("Tool decision response had no choices")

        message = response.choices[0].message
        tool_calls = message.tool_calls or []
        if not tool_calls:
            return ToolDecision()

        first = tool_calls[0]
        try:
            arguments = parse_tool_arguments(first.function.arguments)
        except ShapeMismatchError as exc:
            return ToolingDegraded(str(exc))

        ignored = len(tool_calls) - 1
        if ignored:
            logger.warning(
                "Model requested %d tool calls, executing only %s",
                len(tool_calls),
                first.function.name,
            )

        call_id = first.id or "call_0"
        assistant_message = {
            "role": ASSISTANT_ROLE,
            "content": message.content or "",
            "tool_calls": [
                {
                    "id": call_id,
                    "type": "function",
                    "function": {
                        "name": first.function.name,
                        "arguments": first.function.arguments or "{}",
                    },
                }
            ],
        }
        return ToolDecision(
            tool_call=ToolCall(id=call_id, name=first.function.name, arguments=arguments),
            assistant_message=assistant_message,
            ignored_calls=ignored,
        )

    def prepare_turn(
        self,
        request: TurnRequest,
        on_complete: Callable[[str], None] | None = None,
    ) -> PreparedTurn:
        """Run the turn up to the point where the final stream is open.

        Args:
            request: The turn to run.
            on_complete: Called on a background thread with the full answer once
                the stream finished. Failures are logged and never affect the answer.

        Returns:
            PreparedTurn ready to be iterated.

        Raises:
            UpstreamUnavailableError: If not even a direct stream can be opened.
        """
        self._transition(TurnState.START, request.model)
        transcript = request.transcript()

        tools = self.registry.available_tools(request.model, request.tooling_enabled)
        if tools:
            prepared = self._prepare_tool_turn(request, transcript, tools)
            if prepared is not None:
                prepared.on_complete = on_complete
                return prepared

        self._transition(TurnState.DIRECT_STREAM, request.model)
        stream = self.gateway.open_stream(transcript, request.model)
        return PreparedTurn(stream, TurnState.DIRECT_STREAM, on_complete=on_complete)

    def _prepare_tool_turn(
        self,
        request: TurnRequest,
        transcript: list[dict[str, Any]],
        tools: list[ToolDefinition],
    ) -> PreparedTurn | None:
        self._transition(TurnState.TOOL_DECISION, request.model)
        try:
            outcome = self.decide(transcript, request.model, tools)
        except Exception:
            logger.exception("Tool-calling degraded: tool decision raised")
            return None
        if isinstance(outcome, ToolingDegraded):
            logger.warning("Tool-calling degraded: %s", outcome.reason)
            return None
        if outcome.tool_call is None:
            logger.info("Model answered without a tool call")
            return None

        call = outcome.tool_call
        self._transition(TurnState.TOOL_EXEC, request.model)
        try:
            result = self.executor.execute(
                call.name, call.arguments, request.document_chunks
            )
        except Exception:
            logger.exception("Tool-calling degraded: tool %s failed", call.name)
            return None

        augmented = [
            *transcript,
            outcome.assistant_message,
            {"role": TOOL_ROLE, "tool_call_id": call.id, "content": result.text},
        ]

        self._transition(TurnState.TOOL_STREAM, request.model)
        try:
            stream = self.gateway.open_stream(augmented, request.model)
        except UpstreamUnavailableError as exc:
            logger.warning("Tool-calling degraded: final stream failed: %s", exc)
            return None

        return PreparedTurn(
            stream,
            TurnState.TOOL_STREAM,
            tool_invoked=ToolInvoked(name=call.name, arguments=call.arguments),
        )

    def stream_turn(self, request: TurnRequest) -> Iterator[str]:
        """Run a whole turn and yield its SSE frames.

        Yields:
            Server-sent event frames.
        """
        prepared = self.prepare_turn(request)
        try:
            yield from sse_frames(prepared.events())
        finally:
            prepared.close()
