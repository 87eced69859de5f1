"""Publish one commerce event to the dispatcher's Kafka topic.

Handy for replaying a business event by hand; publishing the same
`--event-id` twice exercises inbox dedupe.
"""

import argparse
import asyncio
import json
from uuid import uuid4

from aiokafka import AIOKafkaProducer


async def publish(bootstrap_servers: str, topic: str, payload: dict) -> None:
    """Open producer, publish one message, close producer."""

    producer = AIOKafkaProducer(bootstrap_servers=bootstrap_servers)
    await producer.start()
    try:
        await producer.send_and_wait(topic, json.dumps(payload).encode("utf-8"))
    finally:
        await producer.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Publish a commerce event for notification dispatch.")
    parser.add_argument("--bootstrap-servers", default="localhost:9092")
    parser.add_argument("--topic", default="commerce.events")
    parser.add_argument("--tenant-id", required=True)
    parser.add_argument("--event-type", required=True, help="Canonical event type, e.g. order.paid")
    parser.add_argument("--entity-id", required=True)
    parser.add_argument("--entity-type", default="order")
    parser.add_argument("--event-id", default=None, help="Reuse an id to test duplicate delivery")
    parser.add_argument("--context", default="{}", help="Inline JSON context (customer, items...)")
    args = parser.parse_args()

    payload = {
        "event_id": args.event_id or str(uuid4()),
        "tenant_id": args.tenant_id,
        "event_type": args.event_type,
        "entity": {"id": args.entity_id, "type": args.entity_type},
        "context": json.loads(args.context),
    }
    asyncio.run(publish(args.bootstrap_servers, args.topic, payload))
    print(f"Published event_id={payload['event_id']} to topic={args.topic}")


if __name__ == "__main__":
    main()
