import json
from typing import Any, Dict

import boto3


class AwsSnsNotifier:
    notifier_type = "aws_sns"

    def __init__(self, config: Dict[str, Any]):
        self.config = config or {}

    def notify(self, message: Dict[str, Any]):
        topic_arn = str(self.config.get("topic_arn") or "").strip()
        if not topic_arn:
            return
        region = str(self.config.get("region") or "").strip()
        prefix = str(self.config.get("subject_prefix") or "").strip()
        message_attributes = self.config.get("message_attributes") if isinstance(self.config.get("message_attributes"), dict) else {}
        client = boto3.client("sns", region_name=region) if region else boto3.client("sns")
        subject = f"{prefix} process {message.get('event')} {message.get('name') or message.get('guid')}".strip()
        attrs = {
            "event": {"DataType": "String", "StringValue": str(message.get("event"))},
        }
        attrs.update(
            {str(key): {"DataType": "String", "StringValue": str(value)} for key, value in message_attributes.items()}
        )
        client.publish(TopicArn=topic_arn, Subject=subject[:100], Message=json.dumps(message), MessageAttributes=attrs)
