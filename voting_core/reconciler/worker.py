"""
Tally reconciliation worker.

Consumes reconcile requests published by the voting API when a counter
increment fails after the vote was recorded, and periodically sweeps every
candidate of the election so that requests lost in transit are still
corrected.
"""
import asyncio
import json
import logging
import signal
import sys
from typing import Optional

import redis.asyncio as redis
from aio_pika.abc import AbstractIncomingMessage
from prometheus_client import Counter, Gauge, start_http_server

from ..api.directory import CandidateDirectory
from ..storage.database import Database, DatabaseError
from ..storage.ledger import VoteLedger
from ..storage.reconcile import TallyReconciler
from ..storage.tally import TallyStore, TallyStoreError
from .config import config
from .rabbitmq_client import ReconcileConsumer

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)

# Prometheus metrics
reconcile_requests_total = Counter(
    'reconcile_requests_total',
    'Reconcile requests handled',
    ['status']
)

tally_drift_corrected_total = Counter(
    'tally_drift_corrected_total',
    'Counters found out of line with the ledger and corrected'
)

last_sweep_drifted = Gauge(
    'reconcile_last_sweep_drifted',
    'Candidates with drift in the most recent sweep'
)

reconcile_errors = Counter(
    'reconcile_errors_total',
    'Total number of reconciliation errors',
    ['error_type']
)


class InvalidRequest(ValueError):
    """Reconcile request payload is unusable."""


class ReconciliationWorker:
    """Resyncs tally counters to the ledger on request and on a timer."""

    def __init__(
        self,
        reconciler: TallyReconciler,
        directory: CandidateDirectory,
        rabbitmq: Optional[ReconcileConsumer] = None,
        election_id: str = config.ELECTION_ID,
        sweep_interval: float = config.SWEEP_INTERVAL_SECONDS
    ):
        self.reconciler = reconciler
        self.directory = directory
        self.rabbitmq = rabbitmq
        self.election_id = election_id
        self.sweep_interval = sweep_interval
        self.running = True
        self._consume_task: Optional[asyncio.Task] = None

    def _signal_handler(self, signum):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.running = False
        if self._consume_task:
            self._consume_task.cancel()

    async def handle_request(self, request: dict):
        """
        Reconcile the candidate named in a request.

        Raises:
            InvalidRequest: candidate_id missing
        """
        candidate_id = request.get('candidate_id')
        if not candidate_id:
            raise InvalidRequest("reconcile request without candidate_id")
        election_id = request.get('election_id') or self.election_id

        outcome = await self.reconciler.reconcile_candidate(candidate_id, election_id)
        if outcome.drift:
            tally_drift_corrected_total.inc()
        reconcile_requests_total.labels(status='reconciled').inc()
        logger.info(
            f"Reconciled candidate {candidate_id} in {election_id}: "
            f"{outcome.previous_count} -> {outcome.ledger_count} "
            f"(reason={request.get('reason', 'unspecified')})"
        )
        return outcome

    async def _on_message(self, message: AbstractIncomingMessage):
        """Callback for RabbitMQ messages."""
        try:
            request = json.loads(message.body.decode())
            await self.handle_request(request)

        except (json.JSONDecodeError, InvalidRequest) as e:
            logger.error(f"Discarding malformed reconcile request: {e}")
            reconcile_errors.labels(error_type='malformed').inc()
            await message.reject(requeue=False)

        except (DatabaseError, TallyStoreError) as e:
            logger.error(f"Storage error handling reconcile request: {e}")
            reconcile_errors.labels(error_type='storage').inc()
            await message.nack(requeue=True)

    async def sweep(self):
        """Reconcile every candidate of the election."""
        candidate_ids = await self.directory.list_candidate_ids()
        outcomes = await self.reconciler.reconcile_all(self.election_id, candidate_ids)
        drifted = sum(1 for o in outcomes if o.drift)
        tally_drift_corrected_total.inc(drifted)
        last_sweep_drifted.set(drifted)
        return outcomes

    async def _sweep_loop(self):
        """Background task running the periodic sweep."""
        while self.running:
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Sweep failed: {e}", exc_info=True)
                reconcile_errors.labels(error_type='sweep').inc()
            await asyncio.sleep(self.sweep_interval)

    async def start(self):
        """Run the sweep loop and consume reconcile requests until stopped."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self._signal_handler, signum)

        logger.info(f"Starting Prometheus metrics server on port {config.PROMETHEUS_PORT}")
        start_http_server(config.PROMETHEUS_PORT)

        sweep_task = asyncio.create_task(self._sweep_loop())
        self._consume_task = asyncio.create_task(self.rabbitmq.consume(callback=self._on_message))
        try:
            await self._consume_task
        except asyncio.CancelledError:
            logger.info("Consumer cancelled")
        finally:
            sweep_task.cancel()
            try:
                await sweep_task
            except asyncio.CancelledError:
                pass

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("Shutting down reconciliation worker...")
        self.running = False
        if self.rabbitmq:
            await self.rabbitmq.close()
        logger.info("Reconciliation worker shutdown complete")


async def main():
    """Main entry point."""
    logger.info("=" * 60)
    logger.info("Starting Tally Reconciliation Worker")
    logger.info(f"Election: {config.ELECTION_ID}")
    logger.info(f"RabbitMQ: {config.RABBITMQ_HOST}:{config.RABBITMQ_PORT}")
    logger.info(f"Queue: {config.RABBITMQ_QUEUE}")
    logger.info(f"Sweep Interval: {config.SWEEP_INTERVAL_SECONDS}s")
    logger.info("=" * 60)

    database = Database(
        config.get_postgres_dsn(),
        min_size=config.POSTGRES_MIN_CONNECTIONS,
        max_size=config.POSTGRES_MAX_CONNECTIONS
    )
    await database.initialize()
    redis_client = redis.from_url(config.get_redis_url(), encoding="utf-8", decode_responses=True)

    worker = ReconciliationWorker(
        TallyReconciler(VoteLedger(database.pool), TallyStore(redis_client)),
        CandidateDirectory(database.pool, timeout=30.0),
        ReconcileConsumer(),
    )

    try:
        await worker.start()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
    finally:
        await worker.shutdown()
        await redis_client.aclose()
        await database.close()


def run():
    """Console entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
