#!/usr/bin/env python3
"""
Broker channel adapters over Kafka (confluent-kafka).

KafkaUnitProducer submits encoded transport units with an idempotent
producer; KafkaUnitConsumer hands raw messages to the consumer state machine
and acknowledges them by storing offsets, which the client auto-commits
periodically and on close.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from confluent_kafka import Consumer, KafkaError, KafkaException, Producer, TopicPartition

from core.config import BrokerConfig
from core.errors import DeliveryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboundMessage:
    key: str
    value: bytes


@dataclass(frozen=True)
class InboundMessage:
    """A consumed message and the coordinates needed to acknowledge it"""
    value: bytes
    topic: str
    partition: int
    offset: int
    key: Optional[bytes] = None


def acknowledgement_offsets(messages: Sequence[InboundMessage]) -> List[Tuple[str, int, int]]:
    """Next offset to commit per (topic, partition): highest consumed offset + 1"""
    highest: Dict[Tuple[str, int], int] = {}
    for message in messages:
        key = (message.topic, message.partition)
        highest[key] = max(highest.get(key, -1), message.offset)
    return [(topic, partition, offset + 1) for (topic, partition), offset in sorted(highest.items())]


class KafkaUnitProducer:
    """
    Idempotent Kafka producer for transport units.

    Duplicate suppression for producer-side retries within one session is
    left to the broker (enable.idempotence).
    """

    name = "KafkaProducer"

    def __init__(self, config: BrokerConfig, flush_timeout: float = 30.0,
                 client_factory: Callable[[dict], Producer] = Producer):
        self.config = config
        self.topic = config.topic
        self.flush_timeout = flush_timeout
        self._client_factory = client_factory
        self._producer: Optional[Producer] = None

    @property
    def is_ready(self) -> bool:
        return self._producer is not None

    def start(self) -> None:
        if self._producer is not None:
            logger.warning(f"{self.name} already connected")
            return
        logger.info(f"Connecting {self.name} to Kafka: {self.config.bootstrap_servers}")
        try:
            self._producer = self._client_factory({
                'bootstrap.servers': self.config.bootstrap_servers,
                'client.id': self.config.client_id,
                'enable.idempotence': True,
                'acks': 'all',
                'retries': 5,
                'retry.backoff.ms': 300,
            })
        except KafkaException as exc:
            raise DeliveryError(f"Cannot create Kafka producer: {exc}") from exc
        logger.info(f"{self.name} connected successfully")

    def stop(self) -> None:
        if self._producer is None:
            return
        logger.info(f"Disconnecting {self.name}...")
        remaining = self._producer.flush(self.flush_timeout)
        self._producer = None
        if remaining:
            raise DeliveryError(f"{remaining} messages were not delivered before disconnect")
        logger.info(f"{self.name} disconnected successfully")

    def send_batch(self, messages: Sequence[OutboundMessage]) -> int:
        """Submit all ``messages`` and wait for delivery; raises DeliveryError on any failure"""
        if self._producer is None:
            raise DeliveryError(f"{self.name} is not connected. Call start() first.")

        failures: List[KafkaError] = []

        def on_delivery(err, msg):
            if err is not None:
                failures.append(err)

        try:
            for message in messages:
                while True:
                    try:
                        self._producer.produce(self.topic, key=message.key, value=message.value,
                                               on_delivery=on_delivery)
                        break
                    except BufferError:
                        # Local queue full: serve delivery callbacks and try again
                        self._producer.poll(1.0)
                self._producer.poll(0)
        except KafkaException as exc:
            raise DeliveryError(f"Failed to submit batch to {self.topic}: {exc}") from exc

        remaining = self._producer.flush(self.flush_timeout)
        if remaining:
            raise DeliveryError(f"{remaining} of {len(messages)} messages still queued after {self.flush_timeout}s")
        if failures:
            raise DeliveryError(f"{len(failures)} of {len(messages)} messages failed: {failures[0]}")

        logger.info(f"Successfully sent {len(messages)} messages to Kafka topic: {self.topic}")
        return len(messages)


class KafkaUnitConsumer:
    """
    Kafka consumer-group member yielding InboundMessages.

    Offsets are only stored through acknowledge(); enable.auto.offset.store is
    off so nothing is committed for rows that have not been written yet.
    """

    name = "KafkaConsumer"

    def __init__(self, config: BrokerConfig, client_factory: Callable[[dict], Consumer] = Consumer):
        self.config = config
        self.topic = config.topic
        self._client_factory = client_factory
        self._consumer: Optional[Consumer] = None
        self._on_revoke: Optional[Callable[[], None]] = None

    @property
    def is_ready(self) -> bool:
        return self._consumer is not None

    def on_revoke(self, callback: Callable[[], None]) -> None:
        """Register a callback run (on the polling thread) before partitions are revoked"""
        self._on_revoke = callback

    def _handle_revoke(self, consumer, partitions):
        logger.info(f"Partitions revoked: {[p.partition for p in partitions]}")
        if self._on_revoke is not None:
            self._on_revoke()

    def start(self) -> None:
        if self._consumer is not None:
            logger.warning(f"{self.name} already connected")
            return
        logger.info(f"Connecting {self.name} to Kafka: {self.config.bootstrap_servers}")
        try:
            self._consumer = self._client_factory({
                'bootstrap.servers': self.config.bootstrap_servers,
                'client.id': self.config.client_id,
                'group.id': self.config.group_id,
                'session.timeout.ms': self.config.session_timeout_ms,
                'auto.offset.reset': 'earliest',
                'enable.auto.commit': True,
                'auto.commit.interval.ms': self.config.auto_commit_interval_ms,
                'enable.auto.offset.store': False,
            })
            logger.info(f"Subscribing to topic: {self.topic}")
            self._consumer.subscribe([self.topic], on_revoke=self._handle_revoke)
        except KafkaException as exc:
            raise DeliveryError(f"Cannot subscribe to {self.topic}: {exc}") from exc
        logger.info(f"{self.name} connected successfully")

    def stop(self) -> None:
        """Close the consumer; the client commits stored offsets on close"""
        if self._consumer is None:
            return
        logger.info(f"Disconnecting {self.name}...")
        try:
            self._consumer.close()
        finally:
            self._consumer = None
        logger.info(f"{self.name} disconnected successfully")

    def poll(self, timeout: float = 1.0) -> Optional[InboundMessage]:
        if self._consumer is None:
            raise DeliveryError(f"{self.name} is not connected. Call start() first.")

        message = self._consumer.poll(timeout)
        if message is None:
            return None

        error = message.error()
        if error is not None:
            if error.code() == KafkaError._PARTITION_EOF:
                return None
            if error.fatal():
                raise DeliveryError(f"Fatal consumer error: {error}")
            logger.warning(f"Consumer error: {error}")
            return None

        return InboundMessage(
            value=message.value(),
            topic=message.topic(),
            partition=message.partition(),
            offset=message.offset(),
            key=message.key(),
        )

    def acknowledge(self, messages: Sequence[InboundMessage]) -> None:
        """Store offsets past ``messages`` so the next auto-commit includes them"""
        if self._consumer is None or not messages:
            return
        offsets = [TopicPartition(topic, partition, offset)
                   for topic, partition, offset in acknowledgement_offsets(messages)]
        try:
            self._consumer.store_offsets(offsets=offsets)
        except KafkaException as exc:
            raise DeliveryError(f"Failed to store offsets: {exc}") from exc
