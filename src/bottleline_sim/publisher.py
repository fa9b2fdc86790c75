"""MQTT output sink for simulation ticks with publish buffering."""

import json
import logging
import threading
import time
from dataclasses import dataclass
from queue import Empty, Queue
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt

from .config import MQTTConfig

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_S = 10


@dataclass
class Message:
    """MQTT message to be published."""

    topic: str
    payload: Dict[str, Any]
    retain: bool = False
    qos: int = 1


class MQTTPublisher:
    """Publishes line metrics, readings and alerts under the line's base topic."""

    def __init__(self, mqtt_config: MQTTConfig):
        self.mqtt_config = mqtt_config

        self._client: Optional[mqtt.Client] = None
        self._connected = False
        self._publish_queue: "Queue[Message]" = Queue()
        self._publish_thread: Optional[threading.Thread] = None
        self._running = False
        self._dry_run = False
        self._connect_event = threading.Event()

        # Stats
        self._messages_published = 0
        self._messages_dropped = 0

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def base_topic(self) -> str:
        return f"{self.mqtt_config.topic_prefix}/{self.mqtt_config.line_id}"

    @property
    def stats(self) -> Dict[str, int]:
        return {
            "published": self._messages_published,
            "dropped": self._messages_dropped,
            "queued": self._publish_queue.qsize(),
        }

    def connect(self, dry_run: bool = False) -> bool:
        """Open the broker session, or just start the queue in dry-run mode."""
        self._dry_run = dry_run

        if dry_run:
            logger.info(f"Dry run: messages for {self.base_topic} are logged, not sent")
            self._connected = True
            self._start_publish_thread()
            return True

        try:
            self._client = self._build_client()
            logger.info(f"Connecting to {self.mqtt_config.broker}:{self.mqtt_config.port}")
            self._client.connect(self.mqtt_config.broker, self.mqtt_config.port)
            self._client.loop_start()
        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

        if not self._connect_event.wait(CONNECT_TIMEOUT_S) or not self._connected:
            logger.error(f"Could not open a session with {self.mqtt_config.broker}")
            self._client.loop_stop()
            return False

        self._start_publish_thread()
        self.publish("status", {"online": True, "timestamp_ms": int(time.time() * 1000)}, retain=True)
        return True

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            client_id=self.mqtt_config.client_id,
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        )
        if self.mqtt_config.username:
            client.username_pw_set(self.mqtt_config.username, self.mqtt_config.password)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        return client

    def disconnect(self) -> None:
        """Flush pending messages and disconnect from the broker."""
        self._running = False

        if self._publish_thread:
            self._publish_thread.join(timeout=2)
            self._publish_thread = None

        self.flush()

        if self._client and not self._dry_run:
            self._client.loop_stop()
            self._client.disconnect()

        self._connected = False
        logger.info(
            f"Disconnected from MQTT broker ({self._messages_published} published, "
            f"{self._messages_dropped} dropped)"
        )

    def publish(self, topic: str, payload: Dict[str, Any], retain: bool = False) -> bool:
        """Queue a message under the base topic."""
        if not self._connected:
            self._count(False)
            return False

        full_topic = f"{self.base_topic}/{topic}"
        self._publish_queue.put(
            Message(topic=full_topic, payload=payload, retain=retain, qos=self.mqtt_config.qos)
        )
        return True

    def publish_tick(self, tick: Any) -> None:
        """Publish a tick result: line metrics, per-machine readings, alerts."""
        self.publish("metrics", tick.metrics, retain=True)
        for reading in tick.readings:
            self.publish(f"machines/{reading.machine_id}/sensors", reading.to_dict())
        for alert in tick.alerts:
            self.publish(f"machines/{alert.machine_id}/alerts", alert.to_dict())

    def flush(self) -> int:
        """Publish everything still queued on the calling thread."""
        count = 0
        while True:
            try:
                msg = self._publish_queue.get_nowait()
            except Empty:
                return count
            self._do_publish(msg)
            count += 1

    def _start_publish_thread(self) -> None:
        """Start the background publish thread."""
        self._running = True
        self._publish_thread = threading.Thread(target=self._publish_loop, daemon=True)
        self._publish_thread.start()

    def _publish_loop(self) -> None:
        """Background thread that publishes queued messages."""
        while self._running:
            try:
                msg = self._publish_queue.get(timeout=0.1)
            except Empty:
                continue
            self._do_publish(msg)

    def _count(self, delivered: bool) -> None:
        if delivered:
            self._messages_published += 1
        else:
            self._messages_dropped += 1

    def _do_publish(self, msg: Message) -> None:
        """Send one queued message; every message ends up published or dropped."""
        payload_str = json.dumps(msg.payload, default=str)

        if self._dry_run:
            logger.debug(f"[DRY RUN] {msg.topic}: {payload_str[:100]}")
            self._count(True)
            return

        if self._client is None or not self._connected:
            self._count(False)
            return

        try:
            info = self._client.publish(msg.topic, payload_str, qos=msg.qos, retain=msg.retain)
        except Exception as e:
            logger.error(f"Error publishing to {msg.topic}: {e}")
            self._count(False)
            return

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning(f"Broker refused {msg.topic}: rc={info.rc}")
        self._count(info.rc == mqtt.MQTT_ERR_SUCCESS)

    def _on_connect(self, client, userdata, flags, rc, properties=None) -> None:
        if rc == 0:
            self._connected = True
            logger.info(f"Connected, publishing under {self.base_topic}")
        else:
            logger.error(f"Broker rejected connection: {rc}")
        self._connect_event.set()

    def _on_disconnect(self, client, userdata, flags, rc, properties=None) -> None:
        self._connected = False
        self._connect_event.clear()
        if rc != 0:
            logger.warning(f"Lost broker connection (rc={rc})")
