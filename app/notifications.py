import asyncio
import json
import logging
import ssl
from contextlib import suppress
from dataclasses import asdict, dataclass

from aiomqtt import Client

from app.config import (
    CA_CERT,
    CLIENT_CERT,
    CLIENT_KEY,
    MQTT_HOST,
    MQTT_NOTIFY_TOPIC,
    MQTT_PASSWORD,
    MQTT_PORT,
    MQTT_TLS_ENABLED,
    MQTT_TLS_PORT,
    MQTT_USERNAME,
    NOTIFY_QUEUE_SIZE,
)


@dataclass
class Notification:
    address: str
    subject: str
    body: str


async def publish_mqtt(notification: Notification, topic: str = MQTT_NOTIFY_TOPIC):
    """Hand a notification to the mail bridge listening on ``topic``."""
    tls_context = None

    if MQTT_TLS_ENABLED:
        logging.info("TLS is enabled. Setting up SSL context.")

        tls_context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
        tls_context.load_verify_locations(cafile=CA_CERT)
        tls_context.load_cert_chain(certfile=CLIENT_CERT, keyfile=CLIENT_KEY)

    port = MQTT_TLS_PORT if MQTT_TLS_ENABLED else MQTT_PORT
    logging.info(f"Connecting to MQTT broker at {MQTT_HOST}:{port}")

    async with Client(
        hostname=MQTT_HOST,
        port=port,
        username=MQTT_USERNAME,
        password=MQTT_PASSWORD,
        tls_context=tls_context
    ) as client:
        await client.publish(topic, json.dumps(asdict(notification)).encode())
        logging.info(f"Published notification for {notification.address} to '{topic}'")


class NotificationDispatcher:
    """Delivers notifications from a bounded queue on a background task.

    Callers never wait on delivery and never see its failures: a full queue or a
    failed publish is logged and the notification is dropped.
    """

    def __init__(self, send=publish_mqtt, maxsize: int = NOTIFY_QUEUE_SIZE):
        self.send = send
        self.queue = asyncio.Queue(maxsize=maxsize)
        self._worker = None

    def start(self):
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    async def stop(self):
        if self._worker is not None:
            self._worker.cancel()
            with suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None

    async def drain(self):
        await self.queue.join()

    def notify(self, address: str, subject: str, body: str) -> bool:
        if not address:
            logging.info(f"No contact address, skipping notification '{subject}'")
            return False
        try:
            self.queue.put_nowait(Notification(address=address, subject=subject, body=body))
        except asyncio.QueueFull:
            logging.warning(f"Notification queue full, dropping '{subject}' for {address}")
            return False
        return True

    async def _run(self):
        while True:
            notification = await self.queue.get()
            try:
                await self.send(notification)
            except Exception as e:
                logging.error(f"Notification to {notification.address} failed: {e}")
            finally:
                self.queue.task_done()
