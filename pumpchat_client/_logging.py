import logging

logger = logging.getLogger("pumpchat_client")
