from app.core.config import settings


class RabbitMQConfig:
    """Connection and routing settings for settlement events"""

    def __init__(self):
        self.host = settings.RABBITMQ_HOST
        self.port = settings.RABBITMQ_PORT
        self.username = settings.RABBITMQ_USER
        self.password = settings.RABBITMQ_PASSWORD
        self.virtual_host = settings.RABBITMQ_VHOST

        self.settlement_events_exchange = settings.SETTLEMENT_EVENTS_EXCHANGE
        self.payment_recorded_key = "settlement.payment_recorded"
        self.settlement_completed_key = "settlement.completed"
        self.settlement_cancelled_key = "settlement.cancelled"


rabbitmq_config = RabbitMQConfig()
