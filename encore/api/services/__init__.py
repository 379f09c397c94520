from .queue_service import QueueService, parse_kind

__all__ = ["QueueService", "parse_kind"]
