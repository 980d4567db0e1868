from .registry import NotifierRegistry, process_message

__all__ = ["NotifierRegistry", "process_message"]
