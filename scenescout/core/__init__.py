from scenescout.core.config import get_config
from scenescout.core.logging import setup_logging

__all__ = ["get_config", "setup_logging"]
