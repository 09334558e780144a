import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Storage
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./parking.db")
DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"
DB_LOCK_TIMEOUT = float(os.getenv("DB_LOCK_TIMEOUT", "5"))
DB_MAX_RETRIES = int(os.getenv("DB_MAX_RETRIES", "3"))
DB_RETRY_BACKOFF = float(os.getenv("DB_RETRY_BACKOFF", "0.05"))

# Billing
PARKING_RATES = os.getenv("PARKING_RATES", "car=5,bike=3,truck=10")
PARKING_DEFAULT_RATE = float(os.getenv("PARKING_DEFAULT_RATE", "5"))

# Notifications
CA_CERT = os.path.join(BASE_DIR, "mqtt", "iot_mqtt_ca.crt")
CLIENT_CERT = os.path.join(BASE_DIR, "mqtt", "iot_mqtt_client.crt")
CLIENT_KEY = os.path.join(BASE_DIR, "mqtt", "iot_mqtt_client.key")

MQTT_HOST = os.getenv("MQTT_HOST")
MQTT_PORT = int(os.getenv("MQTT_PORT", "1883"))
MQTT_TLS_PORT = int(os.getenv("MQTT_TLS_PORT", "8883"))
MQTT_USERNAME = os.getenv("MQTT_USERNAME")
MQTT_PASSWORD = os.getenv("MQTT_PASSWORD")
MQTT_NOTIFY_TOPIC = os.getenv("MQTT_NOTIFY_TOPIC", "parking/notifications/email")
MQTT_TLS_ENABLED = os.getenv("MQTT_TLS_ENABLED", "false").lower() == "true"
NOTIFY_QUEUE_SIZE = int(os.getenv("NOTIFY_QUEUE_SIZE", "1000"))