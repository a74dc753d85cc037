# audit_stream/infrastructure/messaging/rabbitmq_publisher.py

import json
import logging
from typing import Any, Dict, Optional

import aio_pika

logger = logging.getLogger(__name__)


class RabbitMQBroadcastSink:
    """
    Hub subscriber that republishes every broadcast message to a topic exchange,
    routed by message type (audit_event / suspicion_alert).
    Publish failures are logged here and not raised: a broker outage must not get the sink pruned.
    """

    def __init__(self, url: str, exchange_name: str) -> None:
        self._url = url
        self._exchange_name = exchange_name
        self._connection = None
        self._channel = None
        self._exchange = None

    async def connect(self):
        self._connection = await aio_pika.connect_robust(self._url)
        self._channel = await self._connection.channel()
        self._exchange = await self._channel.declare_exchange(
            self._exchange_name,
            aio_pika.ExchangeType.TOPIC,
            durable=True,
        )

    async def send_json(self, data: Dict[str, Any]) -> None:
        routing_key = str(data.get("type", "unknown"))
        try:
            if self._exchange is None:
                await self.connect()
            msg = aio_pika.Message(
                body=json.dumps(data, default=str).encode(),
                content_type="application/json",
                delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            )
            await self._exchange.publish(msg, routing_key=routing_key)
        except Exception as e:
            logger.warning(
                "broker_publish_failed",
                extra={"exchange": self._exchange_name, "routing_key": routing_key, "error": str(e)},
            )

    async def close(self) -> None:
        connection: Optional[Any] = self._connection
        self._connection = None
        self._channel = None
        self._exchange = None
        if connection is not None:
            await connection.close()
