from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone

from confluent_kafka import Producer

LOGGER = logging.getLogger('tokenforge.events')

EVENT_TYPE = 'token.deployment.recorded'


def build_event(record: dict) -> dict:
    return {
        'event_id': str(uuid.uuid4()),
        'event_type': EVENT_TYPE,
        'occurred_at': datetime.now(timezone.utc).isoformat(),
        **record
    }


class DeploymentEventPublisher:
    def __init__(self, producer: Producer, topic: str) -> None:
        self.producer = producer
        self.topic = topic

    @classmethod
    def from_bootstrap(cls, bootstrap_servers: str, topic: str, client_id: str) -> 'DeploymentEventPublisher':
        producer = Producer(
            {
                'bootstrap.servers': bootstrap_servers,
                'client.id': client_id
            }
        )
        return cls(producer, topic)

    def publish(self, record: dict) -> dict:
        event = build_event(record)
        key = record.get('transaction_hash') or event['event_id']
        self.producer.produce(
            topic=self.topic,
            key=key,
            value=json.dumps(event, default=str).encode('utf-8'),
            headers=[('event_type', EVENT_TYPE.encode('utf-8'))]
        )
        self.producer.poll(0)
        LOGGER.info('deployment event published topic=%s status=%s key=%s', self.topic, record.get('status'), key)
        return event

    def flush(self, timeout: float = 5.0) -> None:
        self.producer.flush(timeout)
