"""Inbound business-event envelope and the Kafka consumer loop.

Order, payment and shipment state machines publish `CommerceEvent` payloads;
the notification service consumes them here and hands each parsed event to a
handler.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from aiokafka import AIOKafkaConsumer
from pydantic import BaseModel, Field

from notifyflow.common.config import settings
from notifyflow.common.logging import log_context, logger
from notifyflow.common.metrics import event_queue_delay_seconds


class EventEntity(BaseModel):
    """Business entity an event is about (order, customer, cart...)."""

    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    product_ids: list[str] = Field(default_factory=list)


class CommerceEvent(BaseModel):
    """Canonical inbound event shape."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    tenant_id: str = Field(min_length=1)
    event_type: str = Field(min_length=1)
    entity: EventEntity
    context: dict[str, Any] = Field(default_factory=dict)
    occurred_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    trace_id: str = Field(default_factory=lambda: str(uuid4()))


def _observe_queue_delay(topic: str, event: CommerceEvent) -> None:
    occurred_at = datetime.fromisoformat(event.occurred_at.replace("Z", "+00:00"))
    if occurred_at.tzinfo is None:
        occurred_at = occurred_at.replace(tzinfo=timezone.utc)
    delay_seconds = max(0.0, (datetime.now(timezone.utc) - occurred_at).total_seconds())
    event_queue_delay_seconds.labels(service=settings.service_name, topic=topic).observe(delay_seconds)


async def make_consumer(topic: str, group_id: str) -> AIOKafkaConsumer:
    """Create a configured Kafka consumer for one topic/group."""

    consumer = AIOKafkaConsumer(
        topic,
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id=group_id,
        auto_offset_reset="earliest",
        enable_auto_commit=False,
    )
    await consumer.start()
    return consumer


async def consume_forever(topic: str, group_id: str, handler) -> None:
    """Continuously consume one topic and pass parsed events to `handler`.

    Errors in individual messages are logged and processing continues; commit is
    done in batches to keep throughput reasonable.
    """

    while True:
        consumer = None
        try:
            consumer = await make_consumer(topic, group_id)
            while True:
                results = await consumer.getmany(timeout_ms=500, max_records=50)
                for _, messages in results.items():
                    for msg in messages:
                        try:
                            event = CommerceEvent(**json.loads(msg.value.decode("utf-8")))
                            _observe_queue_delay(topic, event)
                            with log_context(
                                trace_id=event.trace_id, event_id=event.event_id, tenant_id=event.tenant_id
                            ):
                                logger.info(
                                    "event_received topic=%s event_type=%s entity=%s:%s",
                                    topic,
                                    event.event_type,
                                    event.entity.type,
                                    event.entity.id,
                                )
                                await handler(event)
                        except Exception as exc:
                            logger.error(
                                "handler_error topic=%s group=%s offset=%s error=%s",
                                topic,
                                group_id,
                                msg.offset,
                                exc,
                            )
                await consumer.commit()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("consumer_loop_error topic=%s group=%s error=%s", topic, group_id, exc)
            await asyncio.sleep(2)
        finally:
            if consumer is not None:
                await consumer.stop()
            await asyncio.sleep(0)
