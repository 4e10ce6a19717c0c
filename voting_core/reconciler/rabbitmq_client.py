"""
Consumer side of the reconcile request queue (aio-pika).
"""
import logging
from typing import Awaitable, Callable, Optional

import aio_pika
from aio_pika.abc import (
    AbstractIncomingMessage,
    AbstractQueue,
    AbstractRobustChannel,
    AbstractRobustConnection,
)

from .config import config

logger = logging.getLogger(__name__)

MessageHandler = Callable[[AbstractIncomingMessage], Awaitable[None]]

# Must match the publisher's declaration; RabbitMQ rejects a redeclare with other arguments.
QUEUE_ARGUMENTS = {'x-message-ttl': 86400000}


class ReconcileConsumer:
    """Reads reconcile requests from ``tally.reconcile`` with a robust connection."""

    def __init__(self, queue_name: Optional[str] = None, url: Optional[str] = None):
        self.queue_name = queue_name or config.RABBITMQ_QUEUE
        self.url = url or config.get_rabbitmq_url()
        self.connection: Optional[AbstractRobustConnection] = None
        self.channel: Optional[AbstractRobustChannel] = None
        self.queue: Optional[AbstractQueue] = None

    async def connect(self):
        """Connect, then declare and bind the exchange and queue (idempotent)."""
        self.connection = await aio_pika.connect_robust(
            self.url,
            client_properties={'connection_name': f'reconciler-{self.queue_name}'}
        )
        self.channel = await self.connection.channel()
        await self.channel.set_qos(prefetch_count=config.RABBITMQ_PREFETCH_COUNT)

        exchange = await self.channel.declare_exchange(
            config.RABBITMQ_EXCHANGE,
            aio_pika.ExchangeType.TOPIC,
            durable=True
        )
        self.queue = await self.channel.declare_queue(
            self.queue_name,
            durable=True,
            arguments=QUEUE_ARGUMENTS
        )
        await self.queue.bind(exchange, routing_key=config.RABBITMQ_ROUTING_KEY)
        logger.info(
            f"Consuming {self.queue_name} on {config.RABBITMQ_HOST}:{config.RABBITMQ_PORT} "
            f"(prefetch {config.RABBITMQ_PREFETCH_COUNT})"
        )

    async def consume(self, callback: MessageHandler):
        """
        Hand each message to ``callback`` until cancelled.

        A message the callback leaves unsettled is acked when it returns and
        requeued when it raises.
        """
        if self.queue is None:
            await self.connect()

        async with self.queue.iterator() as messages:
            async for message in messages:
                try:
                    async with message.process(requeue=True, ignore_processed=True):
                        await callback(message)
                except Exception as e:
                    logger.error(f"Reconcile request failed, requeued: {e}", exc_info=True)

    async def close(self):
        if self.connection and not self.connection.is_closed:
            await self.connection.close()
            logger.info("RabbitMQ connection closed")
