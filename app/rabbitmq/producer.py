import json
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Any, Optional
import pika
from .config import rabbitmq_config
from .setup import RabbitMQSetup

logger = logging.getLogger(__name__)


class SettlementNotifier:
    """Publishes settlement lifecycle events to RabbitMQ"""

    def __init__(self):
        self.connection: Optional[pika.BlockingConnection] = None
        self.channel: Optional[pika.channel.Channel] = None
        self.setup = RabbitMQSetup()
        # Serializes use of the shared connection across request threads
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Establish connection to RabbitMQ"""
        try:
            self.connection = self.setup.create_connection()
            self.channel = self.connection.channel()
            self.setup.declare_exchanges(self.channel)
            logger.info("Settlement notifier connected successfully")
        except Exception as e:
            logger.error(f"Failed to connect settlement notifier: {e}")
            raise

    def disconnect(self) -> None:
        """Close RabbitMQ connection"""
        with self._lock:
            if self.channel and not self.channel.is_closed:
                self.channel.close()
            if self.connection and not self.connection.is_closed:
                self.connection.close()
        logger.info("Settlement notifier disconnected")

    def publish_event(self, routing_key: str, payload: Dict[str, Any]) -> bool:
        """
        Publish a settlement event

        Args:
            routing_key: Event name, e.g. settlement.completed
            payload: JSON-serializable event data

        Returns:
            bool: True if message published successfully, False otherwise
        """
        message_data = {
            "event": routing_key,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **payload
        }

        try:
            with self._lock:
                if not self.connection or self.connection.is_closed:
                    self.connect()

                self.channel.basic_publish(
                    exchange=rabbitmq_config.settlement_events_exchange,
                    routing_key=routing_key,
                    body=json.dumps(message_data, default=str),
                    properties=pika.BasicProperties(
                        delivery_mode=2,  # Make message persistent
                        content_type='application/json'
                    )
                )

            logger.info(f"Published {routing_key} event")
            return True

        except Exception as e:
            logger.error(f"Failed to publish {routing_key} event: {e}")
            return False

    def notify_payment_recorded(self, transaction, payment) -> bool:
        return self.publish_event(rabbitmq_config.payment_recorded_key, {
            "settlement_id": transaction.settlement_id,
            "transaction_id": transaction.id,
            "payer_id": transaction.payer_id,
            "payee_id": transaction.payee_id,
            "amount": str(payment.amount),
            "method": payment.method.value,
            "amount_remaining": str(transaction.amount_remaining),
        })

    def notify_settlement_completed(self, settlement) -> bool:
        return self.publish_event(rabbitmq_config.settlement_completed_key, {
            "settlement_id": settlement.id,
            "creator_id": settlement.creator_id,
            "total_amount": str(settlement.total_amount),
            "currency": settlement.currency,
        })

    def notify_settlement_cancelled(self, settlement) -> bool:
        return self.publish_event(rabbitmq_config.settlement_cancelled_key, {
            "settlement_id": settlement.id,
            "creator_id": settlement.creator_id,
        })


# Global notifier instance
_settlement_notifier: Optional[SettlementNotifier] = None


def get_settlement_notifier() -> SettlementNotifier:
    """Get or create settlement notifier instance (connects on first publish)"""
    global _settlement_notifier
    if _settlement_notifier is None:
        _settlement_notifier = SettlementNotifier()
    return _settlement_notifier


def close_settlement_notifier() -> None:
    """Close settlement notifier connection"""
    global _settlement_notifier
    if _settlement_notifier:
        _settlement_notifier.disconnect()
        _settlement_notifier = None
