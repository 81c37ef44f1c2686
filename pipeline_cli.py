#!/usr/bin/env python3
"""
HTML Table Pipeline CLI

Commands:
    produce   fetch a page, infer the table schema and publish rows to Kafka
    consume   buffer rows from Kafka and flush them into PostgreSQL
    inspect   fetch a page and print the tables and schemas found (no Kafka)
    config    show the effective configuration / write an env template
"""

import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

from core.config import ConfigManager, PipelineConfig
from core.errors import PipelineError
from core.logging_config import configure_logging
from core.table_sink import PostgresTableSink
from harvesters.document_fetcher import DocumentFetcher
from harvesters.table_harvester import TableHarvester
from messaging.flush_consumer import FlushConsumer
from messaging.kafka_channel import KafkaUnitConsumer, KafkaUnitProducer
from messaging.producer_batcher import ProducerBatcher

logger = logging.getLogger("pipeline_cli")


def build_harvester(config: PipelineConfig) -> TableHarvester:
    fetcher = DocumentFetcher(
        timeout=config.fetch.timeout,
        max_retries=config.fetch.max_retries,
        base_delay=config.fetch.base_delay,
        user_agent=config.fetch.user_agent,
    )
    return TableHarvester(fetcher=fetcher)


def build_consumer(config: PipelineConfig) -> FlushConsumer:
    return FlushConsumer(
        channel=KafkaUnitConsumer(config.broker),
        sink=PostgresTableSink(config.database),
        batch_size=config.flush.batch_size,
        flush_interval=config.flush.interval_seconds,
        drift_policy=config.flush.drift_policy,
    )


def run_produce(config: PipelineConfig, args: argparse.Namespace) -> int:
    url = args.url or config.source_url
    harvester = build_harvester(config)
    try:
        result = harvester.harvest(url)
    finally:
        harvester.stop()

    table = result.select(args.table_index)
    if table is None:
        logger.error(f"No usable table #{args.table_index} found at {url} ({len(result.tables)} available)")
        return 1

    logger.info(f"Inferred schema: {table.schema.describe()}")
    logger.info(f"Processing {len(table.rows)} rows from table {table.index + 1}")

    producer = KafkaUnitProducer(config.broker)
    producer.start()
    try:
        sent = ProducerBatcher(producer).publish_table(table, provenance=url)
    finally:
        producer.stop()

    print(f"[OK] Published {sent} rows from {url} to topic {config.broker.topic}")
    return 0


def run_consume(config: PipelineConfig, args: argparse.Namespace) -> int:
    consumer = build_consumer(config)

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        consumer.request_shutdown()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    consumer.run()
    print(f"[OK] Consumer stopped: {consumer.stats_snapshot()}")
    return 0


def run_inspect(config: PipelineConfig, args: argparse.Namespace) -> int:
    url = args.url or config.source_url
    harvester = build_harvester(config)
    try:
        result = harvester.harvest(url)
    finally:
        harvester.stop()

    print(f"Source: {url}")
    print(f"Usable tables: {len(result.tables)}  Skipped: {len(result.errors)}")
    for position, table in enumerate(result.tables):
        print()
        unparsed = f", {table.unparsed_cells} unparsed cells" if table.unparsed_cells else ""
        print(f"[{position}] table {table.index + 1}: {len(table.rows)} rows{unparsed}")
        for column in table.schema.columns:
            length = f"({column.max_length})" if column.max_length else ""
            print(f"    {column.name:<30} {column.type.value}{length}")
        if table.rows:
            print(f"    sample: {json.dumps(table.rows[0], default=str)}")
    for error in result.errors:
        print(f"[SKIPPED] {error}")
    return 0


def run_config(manager: ConfigManager, args: argparse.Namespace) -> int:
    if args.write_template:
        path = manager.save_env_template(Path(args.write_template))
        print(f"[OK] Environment template written to {path}")
    print(json.dumps(manager.get_config_info(), indent=2))
    return 0


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--config", type=Path, help="JSON config file (environment variables take priority)")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-file", type=Path)

    subparsers = parser.add_subparsers(dest="command", required=True)

    produce = subparsers.add_parser("produce", help="Publish table rows to Kafka")
    produce.add_argument("--url", help="Page to scrape (defaults to DATA_URL)")
    produce.add_argument("--table-index", type=int, default=0,
                         help="Which usable table to publish (0 = first)")

    subparsers.add_parser("consume", help="Flush rows from Kafka into PostgreSQL")

    inspect = subparsers.add_parser("inspect", help="Print tables and inferred schemas")
    inspect.add_argument("--url", help="Page to scrape (defaults to DATA_URL)")

    config = subparsers.add_parser("config", help="Show effective configuration")
    config.add_argument("--write-template", metavar="DIR", help="Write .env.template into DIR")

    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    try:
        manager = ConfigManager(config_file=args.config)
        if args.command == "config":
            return run_config(manager, args)

        config = manager.get_config()
        if args.command == "produce":
            return run_produce(config, args)
        if args.command == "consume":
            return run_consume(config, args)
        return run_inspect(config, args)
    except PipelineError as exc:
        logger.error(f"{exc.stage} failed: {exc}")
        print(f"[ERROR] {exc}")
        return 1
    except KeyboardInterrupt:
        print("\n[INFO] Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
