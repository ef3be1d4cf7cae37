import logging
import pika
from .config import rabbitmq_config

logger = logging.getLogger(__name__)


class RabbitMQSetup:
    """Creates connections and declares the settlement events exchange"""

    def create_connection(self) -> pika.BlockingConnection:
        credentials = pika.PlainCredentials(rabbitmq_config.username, rabbitmq_config.password)
        parameters = pika.ConnectionParameters(
            host=rabbitmq_config.host,
            port=rabbitmq_config.port,
            virtual_host=rabbitmq_config.virtual_host,
            credentials=credentials,
            heartbeat=600,
            blocked_connection_timeout=300
        )
        return pika.BlockingConnection(parameters)

    def declare_exchanges(self, channel) -> None:
        channel.exchange_declare(
            exchange=rabbitmq_config.settlement_events_exchange,
            exchange_type="topic",
            durable=True
        )
        logger.info(f"Declared exchange {rabbitmq_config.settlement_events_exchange}")


def init_rabbitmq() -> None:
    """Declare exchanges once at startup"""
    setup = RabbitMQSetup()
    connection = setup.create_connection()
    try:
        setup.declare_exchanges(connection.channel())
    finally:
        connection.close()
