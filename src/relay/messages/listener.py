"""Long-lived listeners for event sources.

EventListenerGroup runs one listen_and_serve() task per event source and
stops them all together through a shared stop event.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from src.relay.messages.models import EventDefinitions, EventNode
from src.relay.messages.provider import MessageProviders, ReceiverFunc


logger = logging.getLogger(__name__)


class EventListenerGroup:
    """Owns the listener tasks of an application.

    Example:
        >>> group = EventListenerGroup(providers)
        >>> group.start(node, receiver)
        >>> ...
        >>> await group.stop()
    """

    def __init__(self, providers: MessageProviders):
        self.providers = providers
        self._stop = asyncio.Event()
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def running(self) -> List[str]:
        """Names of the sources whose listener task is still running."""
        return [name for name, task in self._tasks.items() if not task.done()]

    def start(self, node: EventNode, receiver: ReceiverFunc) -> Optional[asyncio.Task]:
        """Start listening on node in a dedicated task.

        Returns:
            The listener task, or None when the node's provider is unknown
            or a listener for the node already runs.
        """
        if node.name in self.running:
            logger.warning("Listener for eventSource '%s' already running", node.name)
            return None

        provider = self.providers.get(node.provider_ref)
        if provider is None:
            logger.error(
                "Unable to find a messageProvider with the name '%s'. "
                "Verify that it has been defined.",
                node.provider_ref,
            )
            return None

        task = asyncio.create_task(
            provider.listen_and_serve(node, receiver, stop=self._stop),
            name=f"listener:{node.name}",
        )
        self._tasks[node.name] = task
        logger.info(
            "Started listener for eventSource %s on topic %s",
            node.name,
            node.topic,
        )
        return task

    def start_all(self, definitions: EventDefinitions, receiver: ReceiverFunc) -> int:
        """Start a listener for every event source.

        Returns:
            The number of listeners started.
        """
        started = 0
        for node in definitions.event_sources:
            if self.start(node, receiver) is not None:
                started += 1
        return started

    async def stop(self, timeout: float = 10.0) -> None:
        """Signal every listener to stop and wait for them to finish.

        Listeners still running after timeout seconds are cancelled. The
        group can be started again afterwards.
        """
        stop, self._stop = self._stop, asyncio.Event()
        stop.set()
        tasks = list(self._tasks.values())
        self._tasks.clear()
        if not tasks:
            return
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            logger.warning("Listener %s did not stop in time, cancelling", task.get_name())
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    "Listener %s ended with error: %s",
                    task.get_name(),
                    str(task.exception()),
                )
