"""
Typed event channel for pipeline observability.

Stages publish ``GraphEvent`` objects to an ``EventChannel``; subscribers
decide what to do with them (stream them over SSE, buffer them for a JSON
response, mirror them into the durable run log). Serialization to the wire
lives in ``SSESerializer`` and ``UIStreamSerializer`` so transports never
see stage internals.
"""

import asyncio
import json
import time
from typing import Any, Dict, List, Literal, Optional, Protocol

import structlog
from pydantic import BaseModel, Field

from .regulatory.constants import GRAPH_NAME

logger = structlog.get_logger(__name__)

EventType = Literal["on_node_start", "on_node_end", "on_tool_call", "on_artifact", "on_error"]

# agent_runs.status values
_RUN_LOG_STATUS = {
    "on_node_start": "start",
    "on_node_end": "end",
    "on_error": "error",
    "on_artifact": "artifact",
    "on_tool_call": "artifact",
}


def now_ms() -> int:
    return int(time.time() * 1000)


class GraphEvent(BaseModel):
    """A single observable step of a run."""

    type: EventType
    run_id: str
    graph: str = GRAPH_NAME
    node: Optional[str] = None
    ts: int = Field(default_factory=now_ms)
    data: Optional[Dict[str, Any]] = None

    def payload(self) -> Dict[str, Any]:
        """Wire payload: run_id, graph, ts, plus node/data when present."""
        body: Dict[str, Any] = {"run_id": self.run_id, "graph": self.graph}
        if self.node is not None:
            body["node"] = self.node
        body["ts"] = self.ts
        if self.data is not None:
            body["data"] = self.data
        return body


class EventSubscriber(Protocol):
    async def publish(self, event: GraphEvent) -> None:
        ...


class EventChannel:
    """Ordered fan-out of events to subscribers for a single run."""

    def __init__(
        self,
        run_id: str,
        subscribers: Optional[List[EventSubscriber]] = None,
        graph: str = GRAPH_NAME,
    ):
        self.run_id = run_id
        self.graph = graph
        self._subscribers: List[EventSubscriber] = list(subscribers or [])

    def subscribe(self, subscriber: EventSubscriber) -> None:
        self._subscribers.append(subscriber)

    def fork(self, run_id: str) -> "EventChannel":
        """A channel for another run that publishes to the same subscribers."""
        return EventChannel(run_id, self._subscribers, self.graph)

    async def emit(
        self,
        type: EventType,
        node: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> GraphEvent:
        event = GraphEvent(type=type, run_id=self.run_id, graph=self.graph, node=node, data=data)
        for subscriber in self._subscribers:
            try:
                await subscriber.publish(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "event_publish_failed",
                    run_id=self.run_id,
                    event_type=type,
                    node=node,
                    subscriber=type_name(subscriber),
                    error=str(e),
                )
        return event

    async def node_start(self, node: str, data: Optional[Dict[str, Any]] = None) -> GraphEvent:
        return await self.emit("on_node_start", node, data)

    async def node_end(self, node: str, data: Optional[Dict[str, Any]] = None) -> GraphEvent:
        return await self.emit("on_node_end", node, data)

    async def tool_call(self, node: str, data: Dict[str, Any]) -> GraphEvent:
        return await self.emit("on_tool_call", node, data)

    async def artifact(self, node: str, data: Dict[str, Any]) -> GraphEvent:
        return await self.emit("on_artifact", node, data)

    async def error(self, node: Optional[str], message: str, **extra: Any) -> GraphEvent:
        return await self.emit("on_error", node, {"message": message, **extra})


def type_name(obj: Any) -> str:
    return type(obj).__name__


class BufferSubscriber:
    """Collects events in memory, for buffered JSON responses and tests."""

    def __init__(self) -> None:
        self.events: List[GraphEvent] = []

    async def publish(self, event: GraphEvent) -> None:
        self.events.append(event)


class QueueSubscriber:
    """Hands events to a streaming transport through an asyncio queue."""

    def __init__(self, maxsize: int = 0) -> None:
        self.queue: "asyncio.Queue[Optional[GraphEvent]]" = asyncio.Queue(maxsize=maxsize)

    async def publish(self, event: GraphEvent) -> None:
        await self.queue.put(event)

    async def close(self) -> None:
        await self.queue.put(None)


class RunLogSink:
    """Mirrors every event into the durable ``agent_runs`` log. Best-effort."""

    def __init__(self, store) -> None:
        self.store = store

    async def publish(self, event: GraphEvent) -> None:
        try:
            await self.store.record_agent_run(
                {
                    "run_id": event.run_id,
                    "graph": event.graph,
                    "node": event.node,
                    "status": _RUN_LOG_STATUS[event.type],
                    "payload": {"type": event.type, "ts": event.ts, "data": event.data},
                }
            )
        except Exception as e:
            logger.warning(
                "agent_run_log_failed",
                run_id=event.run_id,
                node=event.node,
                error=str(e),
            )


class SSESerializer:
    """``event: <type>`` / ``data: <json>`` framing."""

    @staticmethod
    def serialize(event: GraphEvent) -> str:
        return f"event: {event.type}\ndata: {json.dumps(event.payload(), default=str)}\n\n"


class UIStreamSerializer:
    """Framed parts for UI clients: ``data: {"type": ..., "data": ...}``."""

    STATUS = "data-status"
    EVENT = "data-event"
    FINAL = "data-final"
    ERROR = "data-error"

    @staticmethod
    def part(part_type: str, data: Dict[str, Any]) -> str:
        return f"data: {json.dumps({'type': part_type, 'data': data}, default=str)}\n\n"

    @staticmethod
    def done() -> str:
        return "data: [DONE]\n\n"
