"""
Reconcile request publisher.

Casting never rolls back a committed vote; when a counter update fails the
API hands the candidate to the reconciliation worker through RabbitMQ.
"""
import json
import logging
from typing import Optional

import aio_pika
from aio_pika import DeliveryMode, Message, connect_robust
from aio_pika.pool import Pool

from ..shared.models import get_current_timestamp, get_queue_name
from .config import settings

logger = logging.getLogger(__name__)

# Unconsumed requests are dropped after a day; the periodic sweep covers them.
RECONCILE_QUEUE_TTL_MS = 86400000


def build_reconcile_message(request: dict) -> Message:
    """Persistent JSON message for a reconcile request, stamped with ``requested_at``."""
    now = get_current_timestamp()
    payload = {**request, "requested_at": now.isoformat()}
    return Message(
        body=json.dumps(payload).encode(),
        delivery_mode=DeliveryMode.PERSISTENT,
        content_type="application/json",
        timestamp=now
    )


class ReconcileRequestPublisher:
    """Publishes reconcile requests over pooled aio-pika channels."""

    def __init__(
        self,
        url: str = settings.rabbitmq_url,
        exchange_name: str = settings.RABBITMQ_EXCHANGE,
        routing_key: str = settings.RABBITMQ_ROUTING_KEY,
        pool_size: int = settings.RABBITMQ_POOL_SIZE
    ):
        self.url = url
        self.exchange_name = exchange_name
        self.routing_key = routing_key
        self.pool_size = pool_size
        self.connection_pool: Optional[Pool] = None
        self.channel_pool: Optional[Pool] = None

    async def _open_connection(self) -> aio_pika.abc.AbstractRobustConnection:
        return await connect_robust(self.url)

    async def _open_channel(self) -> aio_pika.abc.AbstractChannel:
        async with self.connection_pool.acquire() as connection:
            return await connection.channel()

    async def initialize(self):
        """
        Open the pools and declare the exchange and reconcile queue.

        The queue is declared here as well as in the worker so requests
        published before the worker first starts are kept.
        """
        try:
            self.connection_pool = Pool(self._open_connection, max_size=self.pool_size)
            self.channel_pool = Pool(self._open_channel, max_size=self.pool_size)

            async with self.channel_pool.acquire() as channel:
                exchange = await channel.declare_exchange(
                    self.exchange_name,
                    aio_pika.ExchangeType.TOPIC,
                    durable=True
                )
                queue = await channel.declare_queue(
                    get_queue_name('reconcile'),
                    durable=True,
                    arguments={'x-message-ttl': RECONCILE_QUEUE_TTL_MS}
                )
                await queue.bind(exchange, routing_key=self.routing_key)

            logger.info(
                f"Reconcile publisher ready: exchange={self.exchange_name}, "
                f"routing_key={self.routing_key}"
            )

        except Exception as e:
            logger.error(f"Failed to initialize reconcile publisher: {e}")
            raise

    async def publish_reconcile_request(self, request: dict) -> bool:
        """
        Ask the reconciliation worker to resync one candidate's counter.

        Args:
            request: ``candidate_id``, ``election_id`` and optionally ``vote_id``/``reason``

        Returns:
            bool: True if the broker accepted the message
        """
        if not self.channel_pool:
            logger.error(
                f"Reconcile publisher not initialized, dropping request for "
                f"candidate {request.get('candidate_id')}"
            )
            return False

        try:
            async with self.channel_pool.acquire() as channel:
                exchange = await channel.get_exchange(self.exchange_name)
                await exchange.publish(
                    build_reconcile_message(request),
                    routing_key=self.routing_key
                )
        except Exception as e:
            logger.error(f"Failed to publish reconcile request: {e}")
            return False

        logger.info(
            f"Reconcile requested: candidate={request.get('candidate_id')}, "
            f"election={request.get('election_id')}, reason={request.get('reason')}"
        )
        return True

    async def check_health(self) -> bool:
        """True if a pooled channel can reach the exchange."""
        try:
            async with self.channel_pool.acquire() as channel:
                await channel.get_exchange(self.exchange_name, ensure=True)
                return True
        except Exception as e:
            logger.error(f"RabbitMQ health check failed: {e}")
            return False

    async def close(self):
        try:
            if self.channel_pool:
                await self.channel_pool.close()
            if self.connection_pool:
                await self.connection_pool.close()
            logger.info("Reconcile publisher closed")
        except Exception as e:
            logger.error(f"Error closing reconcile publisher: {e}")


publisher = ReconcileRequestPublisher()
