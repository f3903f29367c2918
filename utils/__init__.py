"""
Utilities Package for Pulse Engine
"""

from utils.logger import get_logger, setup_logging, log_execution_time
from utils.helpers import TimeHelper, StringHelper
from utils.validators import (
    ValidationResult,
    URLValidator,
    ChannelConfigValidator,
    validate_channel_config,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "log_execution_time",
    "TimeHelper",
    "StringHelper",
    "ValidationResult",
    "URLValidator",
    "ChannelConfigValidator",
    "validate_channel_config",
]
