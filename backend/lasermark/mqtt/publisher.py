# lasermark/mqtt/publisher.py

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Iterable

import paho.mqtt.publish as mqtt_publish

logger = logging.getLogger(__name__)


class MqttEventPublisher:
    """Forwards selected cell events (machine alarms) to the plant MQTT broker.

    Topic: <prefix>/alarm/<event type>. Delivery is best effort.
    """

    def __init__(
        self,
        host: str,
        port: int,
        *,
        client_id: str = "",
        topic_prefix: str = "cell1",
        event_types: Iterable[str] = (),
    ) -> None:
        self.host = host
        self.port = port
        self.client_id = client_id
        self.topic_prefix = topic_prefix.rstrip("/")
        self.event_types = set(event_types)

    def topic_for(self, event_type: str) -> str:
        return f"{self.topic_prefix}/alarm/{event_type}"

    async def publish(self, event: Dict[str, Any]) -> None:
        if event.get("type") not in self.event_types:
            return
        await asyncio.to_thread(self.publish_sync, event)

    def publish_sync(self, event: Dict[str, Any]) -> None:
        topic = self.topic_for(event["type"])
        try:
            mqtt_publish.single(
                topic,
                json.dumps(event, ensure_ascii=False),
                qos=1,
                hostname=self.host,
                port=self.port,
                client_id=self.client_id,
            )
            logger.debug("MQTT publish -> %s", topic)
        except Exception as e:
            logger.warning("MQTT publish to %s failed: %r", topic, e)
