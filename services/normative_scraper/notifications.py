"""
Execution Notifications
=======================

Lifecycle events pushed to observers (progress UIs, dashboards).

Delivery is fire-and-forget from the orchestrator's side: sinks may
raise, the orchestrator logs the failure and moves on.

Version: 0.1.0
"""

import uuid
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from shared.database.redis import RedisClient
from shared.logging import get_logger


logger = get_logger(__name__)


class ExecutionStartedMessage(BaseModel):
    execution_id: uuid.UUID
    source_id: uuid.UUID
    source_name: str
    status: str
    started_at: datetime
    triggered_by: str


class ExecutionLogMessage(BaseModel):
    execution_id: uuid.UUID
    source_id: uuid.UUID
    message: str
    level: str = "info"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ExecutionProgressMessage(BaseModel):
    execution_id: uuid.UUID
    source_id: uuid.UUID
    status: str
    documents_found: int
    documents_new: int
    documents_duplicate: int
    documents_error: int
    current_activity: str | None = None


class DocumentFoundMessage(BaseModel):
    execution_id: uuid.UUID
    source_id: uuid.UUID
    document_id: uuid.UUID
    title: str
    code: str | None = None
    category: str | None = None
    is_new: bool = True
    found_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ExecutionCompletedMessage(BaseModel):
    execution_id: uuid.UUID
    source_id: uuid.UUID
    source_name: str
    status: str
    completed_at: datetime
    documents_found: int
    documents_new: int
    documents_duplicate: int
    documents_error: int
    duration_ms: int


class ExecutionFailedMessage(BaseModel):
    execution_id: uuid.UUID
    source_id: uuid.UUID
    source_name: str
    status: str
    failed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    error_message: str
    error_details: str | None = None


class NotificationSink(ABC):
    """Receives the ordered lifecycle stream of every execution."""

    @abstractmethod
    async def execution_started(self, message: ExecutionStartedMessage) -> None: ...

    @abstractmethod
    async def execution_log(self, message: ExecutionLogMessage) -> None: ...

    @abstractmethod
    async def execution_progress(self, message: ExecutionProgressMessage) -> None: ...

    @abstractmethod
    async def document_found(self, message: DocumentFoundMessage) -> None: ...

    @abstractmethod
    async def execution_completed(self, message: ExecutionCompletedMessage) -> None: ...

    @abstractmethod
    async def execution_failed(self, message: ExecutionFailedMessage) -> None: ...


class LoggingNotificationSink(NotificationSink):
    """Writes events to the structured log. Default for development."""

    async def execution_started(self, message: ExecutionStartedMessage) -> None:
        logger.info("notify_execution_started", **message.model_dump(mode="json"))

    async def execution_log(self, message: ExecutionLogMessage) -> None:
        logger.debug("notify_execution_log", **message.model_dump(mode="json"))

    async def execution_progress(self, message: ExecutionProgressMessage) -> None:
        logger.debug("notify_execution_progress", **message.model_dump(mode="json"))

    async def document_found(self, message: DocumentFoundMessage) -> None:
        logger.debug("notify_document_found", **message.model_dump(mode="json"))

    async def execution_completed(self, message: ExecutionCompletedMessage) -> None:
        logger.info("notify_execution_completed", **message.model_dump(mode="json"))

    async def execution_failed(self, message: ExecutionFailedMessage) -> None:
        logger.info("notify_execution_failed", **message.model_dump(mode="json"))


UPDATES_CHANNEL = "scraper:updates"


def execution_channel(execution_id: uuid.UUID) -> str:
    return f"scraper:execution:{execution_id}"


def source_channel(source_id: uuid.UUID) -> str:
    return f"scraper:source:{source_id}"


class RedisNotificationSink(NotificationSink):
    """
    Publishes events over Redis pub/sub.

    Every event goes to the execution and source channels; lifecycle
    events (started, completed, failed) are also broadcast on
    ``scraper:updates``.
    """

    async def _publish(
        self,
        event: str,
        message: BaseModel,
        broadcast: str | None = None,
    ) -> None:
        data = message.model_dump(mode="json")
        payload: dict[str, Any] = {"event": event, "data": data}

        await RedisClient.publish(execution_channel(data["execution_id"]), payload)
        await RedisClient.publish(source_channel(data["source_id"]), payload)

        if broadcast:
            await RedisClient.publish(UPDATES_CHANNEL, {"type": broadcast, "data": data})

    async def execution_started(self, message: ExecutionStartedMessage) -> None:
        await self._publish("execution_started", message, broadcast="started")

    async def execution_log(self, message: ExecutionLogMessage) -> None:
        await self._publish("execution_log", message)

    async def execution_progress(self, message: ExecutionProgressMessage) -> None:
        await self._publish("execution_progress", message)

    async def document_found(self, message: DocumentFoundMessage) -> None:
        await self._publish("document_found", message)

    async def execution_completed(self, message: ExecutionCompletedMessage) -> None:
        await self._publish("execution_completed", message, broadcast="completed")

    async def execution_failed(self, message: ExecutionFailedMessage) -> None:
        await self._publish("execution_failed", message, broadcast="failed")
