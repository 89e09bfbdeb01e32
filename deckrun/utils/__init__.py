from deckrun.utils.logging import configure_logging, get_logger
from deckrun.utils.retry import retry_async

__all__ = ["configure_logging", "get_logger", "retry_async"]
