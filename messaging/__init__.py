"""
Broker messaging.

Transport units, the Kafka channel adapters, the producer batcher and the
buffering consumer that flushes rows into storage.
"""

from .flush_consumer import ConsumerState, FlushConsumer
from .kafka_channel import InboundMessage, KafkaUnitConsumer, KafkaUnitProducer, OutboundMessage
from .producer_batcher import ProducerBatcher
from .transport import TransportUnit, decode_unit, encode_unit, routing_key

__all__ = [
    'ConsumerState',
    'FlushConsumer',
    'InboundMessage',
    'KafkaUnitConsumer',
    'KafkaUnitProducer',
    'OutboundMessage',
    'ProducerBatcher',
    'TransportUnit',
    'decode_unit',
    'encode_unit',
    'routing_key'
]
