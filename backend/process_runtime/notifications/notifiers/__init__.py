from .webhook import WebhookNotifier
from .aws_sns import AwsSnsNotifier

__all__ = ["WebhookNotifier", "AwsSnsNotifier"]
