"""In-process message bus for agents in a swarm.

This module provides functionality to:
- Send messages to a named recipient
- Queue messages for recipients that have no handler yet
- Replay queued messages (FIFO) when a handler registers
- Broadcast to broadcast subscribers and every registered recipient

A send to a recipient without handlers is accepted but undelivered: the
message is queued and ``send_message`` returns False. Handler exceptions
are logged and never stop delivery to the remaining handlers.

Handlers may be plain callables or coroutine functions.
"""

from __future__ import annotations

import inspect
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .logging_config import get_logger
from .protocol import (
    AgentMessage,
    AgentMessageType,
    create_agent_message,
)

logger = get_logger(__name__)

__all__ = [
    "MessageBus",
    "MessageHandler",
    "AgentMessage",
    "AgentMessageType",
]

MessageHandler = Callable[[AgentMessage], Union[None, Awaitable[None]]]

DEFAULT_SENDER = "unknown"


class MessageBus:
    """Routes AgentMessages between named recipients.

    Args:
        team_name: Team this bus serves (informational)
        self_agent_name: Name of the agent owning this bus; skipped by
            ``broadcast(exclude_self=True)`` and used as default sender
        default_sender: Sender used when neither an explicit sender nor
            ``self_agent_name`` is set
    """

    def __init__(
        self,
        team_name: Optional[str] = None,
        self_agent_name: Optional[str] = None,
        default_sender: str = DEFAULT_SENDER,
    ):
        self.team_name = team_name
        self.self_agent_name = self_agent_name
        self.default_sender = default_sender
        self._handlers: Dict[str, List[MessageHandler]] = defaultdict(list)
        self._broadcast_handlers: List[MessageHandler] = []
        self._queues: Dict[str, List[AgentMessage]] = {}

    def set_team_name(self, team_name: str) -> None:
        self.team_name = team_name

    def set_self_agent_name(self, agent_name: str) -> None:
        self.self_agent_name = agent_name

    # Sending

    async def send_message(self, recipient: str, message: AgentMessage) -> bool:
        """Deliver a message to every handler registered for ``recipient``.

        Args:
            recipient: Agent name
            message: Message to deliver

        Returns:
            True if handlers were invoked, False if the message was queued
        """
        handlers = self._handlers.get(recipient)
        if not handlers:
            self._queues.setdefault(recipient, []).append(message)
            logger.debug(
                f"No handler for '{recipient}', queued message "
                f"({len(self._queues[recipient])} pending)"
            )
            return False

        for handler in list(handlers):
            await self._invoke(handler, message, f"message handler for '{recipient}'")
        return True

    async def send_text(self, recipient: str, text: str, sender: Optional[str] = None) -> bool:
        message = create_agent_message(self._sender(sender), text)
        return await self.send_message(recipient, message)

    async def broadcast(self, message: AgentMessage, exclude_self: bool = True) -> None:
        """Deliver a message to broadcast subscribers, then to every recipient.

        Args:
            message: Message to deliver
            exclude_self: Skip handlers registered under ``self_agent_name``
        """
        for handler in list(self._broadcast_handlers):
            await self._invoke(handler, message, "broadcast handler")

        for recipient, handlers in list(self._handlers.items()):
            if exclude_self and recipient == self.self_agent_name:
                continue
            for handler in list(handlers):
                await self._invoke(handler, message, f"message handler for '{recipient}'")

    async def broadcast_text(self, text: str, sender: Optional[str] = None) -> None:
        message = create_agent_message(self._sender(sender), text, AgentMessageType.BROADCAST)
        await self.broadcast(message)

    # Receiving

    async def on_message(self, recipient: str, handler: MessageHandler) -> Callable[[], None]:
        """Register a handler for ``recipient`` and flush its queued messages.

        Queued messages are replayed in the order they were sent. The queue
        is detached before replay, so a handler that sends to its own
        recipient does not see duplicates.

        Returns:
            A function that unregisters the handler
        """
        self._handlers[recipient].append(handler)
        await self._flush_queue(recipient)

        def unsubscribe() -> None:
            handlers = self._handlers.get(recipient)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def on_broadcast(self, handler: MessageHandler) -> Callable[[], None]:
        self._broadcast_handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._broadcast_handlers:
                self._broadcast_handlers.remove(handler)

        return unsubscribe

    # Queue

    def get_queued_message_count(self, recipient: str) -> int:
        return len(self._queues.get(recipient, ()))

    def clear_queue(self, recipient: str) -> None:
        self._queues.pop(recipient, None)

    def clear_all_queues(self) -> None:
        self._queues.clear()

    # Cleanup

    def remove_agent(self, agent_name: str) -> None:
        """Drop every handler and queued message for ``agent_name``."""
        self._handlers.pop(agent_name, None)
        self._queues.pop(agent_name, None)

    def clear(self) -> None:
        self._handlers.clear()
        self._broadcast_handlers.clear()
        self._queues.clear()

    # Helpers

    def _sender(self, sender: Optional[str]) -> str:
        return sender or self.self_agent_name or self.default_sender

    async def _flush_queue(self, recipient: str) -> None:
        queue = self._queues.pop(recipient, None)
        if not queue:
            return
        logger.debug(f"Flushing {len(queue)} queued message(s) to '{recipient}'")
        for message in queue:
            await self.send_message(recipient, message)

    async def _invoke(self, handler: MessageHandler, message: AgentMessage, label: str) -> None:
        try:
            result: Any = handler(message)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Error in {label}: {e}")
