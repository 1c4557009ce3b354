"""
Kafka message broker client
"""
import os
import json
import asyncio
import logging
from typing import Dict, Any, Callable, Optional
from kafka import KafkaProducer, KafkaConsumer
from kafka.errors import KafkaError
import time

from reelgate.lib.publisher import PublishError
from reelgate.models.schedule import PublishRequest

logger = logging.getLogger(__name__)

PUBLISH_TOPIC = 'publish-requests'
DLQ_TOPIC = 'reelgate-dlq'
INGEST_TOPIC = 'asset-ingest'


class MessageBroker:
    """Kafka producer and consumer wrapper. The producer connects on first use."""

    def __init__(self, bootstrap_servers: Optional[str] = None):
        self.bootstrap_servers = bootstrap_servers or os.getenv('KAFKA_BOOTSTRAP_SERVERS', 'localhost:9092')
        self.producer = None
        self.consumers = {}

    def _initialize_producer(self):
        """Initialize Kafka producer"""
        try:
            self.producer = KafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                value_serializer=lambda v: json.dumps(v, default=str).encode('utf-8'),
                key_serializer=lambda k: k.encode('utf-8') if k else None,
                acks='all',
                retries=3,
                max_in_flight_requests_per_connection=1
            )
            logger.info(f"Kafka producer initialized: {self.bootstrap_servers}")
        except KafkaError as e:
            logger.error(f"Failed to initialize Kafka producer: {e}")
            raise

    def publish(self, topic: str, message: Dict[str, Any], key: Optional[str] = None) -> bool:
        """Publish message to topic"""
        if self.producer is None:
            self._initialize_producer()
        try:
            future = self.producer.send(topic, value=message, key=key)
            # Block for 'synchronous' sends
            record_metadata = future.get(timeout=10)
            logger.debug(f"Message sent to {topic} partition {record_metadata.partition} offset {record_metadata.offset}")
            return True
        except KafkaError as e:
            logger.error(f"Failed to send message to {topic}: {e}")
            return False

    def publish_request(self, request: Dict[str, Any]) -> bool:
        """Publish to the publish-requests topic, keyed by profile"""
        return self.publish(PUBLISH_TOPIC, request, key=request.get('profile'))

    def publish_dlq(self, original_message: Dict[str, Any], error: str) -> bool:
        """Publish failed message to dead letter queue"""
        dlq_message = {
            'original_message': original_message,
            'error': error,
            'timestamp': time.time()
        }
        return self.publish(DLQ_TOPIC, dlq_message)

    def create_consumer(self,
                        topic: str,
                        group_id: str,
                        handler: Callable[[Dict[str, Any]], None],
                        auto_offset_reset: str = 'latest'):
        """Create and start a consumer (blocks the calling thread)"""
        try:
            consumer = KafkaConsumer(
                topic,
                bootstrap_servers=self.bootstrap_servers,
                group_id=group_id,
                value_deserializer=lambda m: json.loads(m.decode('utf-8')),
                auto_offset_reset=auto_offset_reset,
                enable_auto_commit=True,
                auto_commit_interval_ms=1000
            )
        except KafkaError as e:
            logger.error(f"Failed to create consumer: {e}")
            raise

        self.consumers[f"{topic}_{group_id}"] = consumer
        logger.info(f"Consumer created for topic {topic} with group {group_id}")

        for message in consumer:
            try:
                handler(message.value)
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Error processing message: {e}")
                self.publish_dlq(message.value, str(e))

    def consume_ingest_stream(self, handler: Callable[[Dict[str, Any]], None]):
        """Consume queued assets from asset-ingest"""
        self.create_consumer(INGEST_TOPIC, 'reelgate-ingest', handler)

    def close(self):
        """Close producer and all consumers"""
        if self.producer:
            self.producer.close()
        for consumer in self.consumers.values():
            consumer.close()
        logger.info("Kafka connections closed")


class KafkaPublisher:
    """Publisher that hands requests to downstream posting workers over Kafka"""

    def __init__(self, broker: MessageBroker):
        self.broker = broker

    async def schedule(self, request: PublishRequest) -> None:
        payload = request.model_dump(mode='json')
        sent = await asyncio.to_thread(self.broker.publish_request, payload)
        if not sent:
            raise PublishError(f"Kafka rejected publish request for {request.asset_id}")

    async def dead_letter(self, message: Dict[str, Any], error: str) -> None:
        await asyncio.to_thread(self.broker.publish_dlq, message, error)
