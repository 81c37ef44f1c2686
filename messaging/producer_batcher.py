#!/usr/bin/env python3
"""
Producer Batcher
Packages typed rows into transport units (one per row, each carrying the
full schema) and submits them to the broker channel as a single batch.
"""

import logging
import time
from typing import Callable, List, Sequence

from pydantic import ValidationError

from core.errors import DeliveryError
from core.schema import InferredTable, TableSchema, TypedRow

from .kafka_channel import OutboundMessage
from .transport import TransportUnit, encode_unit, routing_key

logger = logging.getLogger(__name__)


def epoch_millis() -> int:
    return int(time.time() * 1000)


class ProducerBatcher:
    """
    Build and submit transport units.

    Args:
        channel: Object with ``send_batch(messages) -> int`` (e.g. KafkaUnitProducer)
        clock: Returns the emission time in epoch milliseconds
    """

    def __init__(self, channel, clock: Callable[[], int] = epoch_millis):
        self.channel = channel
        self.clock = clock

    def build_units(self, schema: TableSchema, rows: Sequence[TypedRow], provenance: str) -> List[TransportUnit]:
        emitted_at = self.clock()
        units = []
        for index, row in enumerate(rows):
            try:
                units.append(TransportUnit(
                    table_schema=schema,
                    row=row,
                    emitted_at=emitted_at,
                    provenance=provenance,
                ))
            except ValidationError as exc:
                raise DeliveryError(f"Row {index} cannot be packaged: {exc}") from exc
        return units

    def publish(self, schema: TableSchema, rows: Sequence[TypedRow], provenance: str) -> int:
        """Submit one unit per row as a single batch; returns the number sent"""
        if not rows:
            logger.warning(f"No rows to publish for {provenance}")
            return 0

        units = self.build_units(schema, rows, provenance)
        messages = [
            OutboundMessage(key=routing_key(unit.emitted_at, index), value=encode_unit(unit))
            for index, unit in enumerate(units)
        ]

        logger.info(f"Sending batch of {len(messages)} rows ({len(schema.columns)} columns) from {provenance}")
        sent = self.channel.send_batch(messages)
        logger.info(f"Total rows sent: {sent}")
        return sent

    def publish_table(self, table: InferredTable, provenance: str) -> int:
        return self.publish(table.schema, table.rows, provenance)
