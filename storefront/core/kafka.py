import asyncio
import json
from typing import Any, Optional

from aiokafka import AIOKafkaProducer
from loguru import logger

from storefront.core.config import settings
from storefront.core.metrics import (
    KAFKA_PRODUCER_START_TOTAL,
    KAFKA_PRODUCER_STOP_TOTAL,
    KAFKA_PRODUCER_MESSAGES_TOTAL,
)


class KafkaProducer:
    def __init__(self):
        self._producer: Optional[AIOKafkaProducer] = None

    async def start(self):
        KAFKA_PRODUCER_START_TOTAL.labels(
            service=settings.SERVICE_NAME,
            result="attempt",
        ).inc()
        logger.info("Kafka producer start requested")
        if not settings.KAFKA_ENABLED:
            logger.info("Kafka disabled by settings; producer not started")
            KAFKA_PRODUCER_START_TOTAL.labels(
                service=settings.SERVICE_NAME,
                result="disabled",
            ).inc()
            return
        if self._producer is None:
            producer = AIOKafkaProducer(
                bootstrap_servers=settings.KAFKA_BROKER,
                value_serializer=lambda v: json.dumps(v, ensure_ascii=False).encode(
                    "utf-8"
                ),
            )
            await producer.start()
            self._producer = producer
            logger.info("Kafka producer started")
            KAFKA_PRODUCER_START_TOTAL.labels(
                service=settings.SERVICE_NAME,
                result="success",
            ).inc()

    async def stop(self):
        KAFKA_PRODUCER_STOP_TOTAL.labels(
            service=settings.SERVICE_NAME,
            result="attempt",
        ).inc()
        logger.info("Kafka producer stop requested")
        if self._producer:
            await self._producer.stop()
            self._producer = None
            logger.info("Kafka producer stopped")
            KAFKA_PRODUCER_STOP_TOTAL.labels(
                service=settings.SERVICE_NAME,
                result="success",
            ).inc()

    async def send(self, topic: str, value: Any, key: str | None = None):
        KAFKA_PRODUCER_MESSAGES_TOTAL.labels(
            service=settings.SERVICE_NAME,
            result="attempt",
        ).inc()
        logger.info(
            "Sending Kafka message to topic='{topic}' with key='{key}'",
            topic=topic,
            key=key,
        )
        if not self._producer:
            logger.warning("Kafka producer not initialized; skip send")
            KAFKA_PRODUCER_MESSAGES_TOTAL.labels(
                service=settings.SERVICE_NAME,
                result="not_initialized",
            ).inc()
            return
        try:
            await asyncio.wait_for(
                self._producer.send_and_wait(
                    topic,
                    value=value,
                    key=(key.encode() if key else None),
                ),
                timeout=settings.KAFKA_SEND_TIMEOUT,
            )
            logger.info(
                "Kafka message sent to topic='{topic}' with key='{key}'",
                topic=topic,
                key=key,
            )
            KAFKA_PRODUCER_MESSAGES_TOTAL.labels(
                service=settings.SERVICE_NAME,
                result="success",
            ).inc()
        except asyncio.TimeoutError:
            logger.error(
                "Kafka send to topic='{topic}' with key='{key}' timed out after {timeout}s",
                topic=topic,
                key=key,
                timeout=settings.KAFKA_SEND_TIMEOUT,
            )
            KAFKA_PRODUCER_MESSAGES_TOTAL.labels(
                service=settings.SERVICE_NAME,
                result="timeout",
            ).inc()
        except Exception as e:
            logger.exception(
                "Failed to send Kafka message to topic='{topic}' with key='{key}': {error}",
                topic=topic,
                key=key,
                error=str(e),
            )
            KAFKA_PRODUCER_MESSAGES_TOTAL.labels(
                service=settings.SERVICE_NAME,
                result="error",
            ).inc()


kafka_producer = KafkaProducer()
