"""
Deferred ingestion worker: polls SQS and indexes the referenced documents.
"""

from __future__ import annotations

import asyncio
import logging

from answer_engine.config import get_settings
from answer_engine.dependencies import build_vector_store
from answer_engine.errors import NotFoundError
from answer_engine.queue.sqs_client import get_sqs_client, parse_ingest_message
from answer_engine.runtime import bootstrap
from answer_engine.services.vector_store import IngestResult, VectorStore

logger = logging.getLogger(__name__)


async def process_job_message(store: VectorStore, message: dict) -> IngestResult | None:
    document_id = parse_ingest_message(message)
    try:
        result = await store.process_document(document_id)
    except NotFoundError:
        logger.warning('Document vanished before indexing', extra={'document_id': str(document_id)})
        return None
    logger.info('Indexed document: %s', result.status.value, extra={'document_id': str(document_id)})
    return result


async def poll_once(store: VectorStore, sqs, queue_url: str) -> int:
    resp = await asyncio.to_thread(
        sqs.receive_message,
        QueueUrl=queue_url,
        MaxNumberOfMessages=5,
        WaitTimeSeconds=20,
    )
    messages = resp.get('Messages', [])
    for msg in messages:
        try:
            await process_job_message(store, msg)
        except Exception:
            # left on the queue; SQS redelivers after the visibility timeout
            logger.exception('Ingestion job failed')
            continue
        await asyncio.to_thread(sqs.delete_message, QueueUrl=queue_url, ReceiptHandle=msg['ReceiptHandle'])
    return len(messages)


async def run_forever() -> None:
    settings = get_settings()
    if not settings.sqs_ingest_queue_url:
        raise RuntimeError('SQS_INGEST_QUEUE_URL is required for worker')

    store = build_vector_store()
    sqs = get_sqs_client()
    logger.info('Ingestion worker started')
    while True:
        await poll_once(store, sqs, settings.sqs_ingest_queue_url)


def run() -> None:
    bootstrap()
    asyncio.run(run_forever())


if __name__ == '__main__':
    run()
