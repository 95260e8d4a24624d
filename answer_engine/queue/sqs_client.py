from __future__ import annotations

import asyncio
import json
import uuid

import boto3

from answer_engine.config import get_settings


def get_sqs_client():
    settings = get_settings()
    return boto3.client('sqs', region_name=settings.aws_region, endpoint_url=settings.aws_endpoint_url)


def build_ingest_message(document_id: uuid.UUID) -> str:
    return json.dumps({'job_type': 'index_document', 'document_id': str(document_id)})


def parse_ingest_message(message: dict) -> uuid.UUID:
    body = json.loads(message['Body'])
    return uuid.UUID(body['document_id'])


def enqueue_ingest_job(document_id: uuid.UUID, client=None) -> None:
    settings = get_settings()
    if not settings.sqs_ingest_queue_url:
        raise RuntimeError('SQS_INGEST_QUEUE_URL is required for deferred ingestion')
    client = client or get_sqs_client()
    client.send_message(QueueUrl=settings.sqs_ingest_queue_url, MessageBody=build_ingest_message(document_id))


async def enqueue_ingest_job_async(document_id: uuid.UUID) -> None:
    await asyncio.to_thread(enqueue_ingest_job, document_id)
