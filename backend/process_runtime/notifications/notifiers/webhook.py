from typing import Any, Dict

import requests


class WebhookNotifier:
    notifier_type = "webhook"

    def __init__(self, config: Dict[str, Any]):
        self.config = config or {}
        self.url = str(self.config.get("url") or "").strip()

    def notify(self, message: Dict[str, Any]):
        if not self.url:
            return
        timeout = self.config.get("timeout_seconds") or 10
        headers = self.config.get("headers") if isinstance(self.config.get("headers"), dict) else {}
        response = requests.post(self.url, json=message, headers=headers, timeout=timeout)
        response.raise_for_status()
