"""
Utility helpers for the receipt storage engine.
"""

from .instance_guard import InstanceLock, InstanceLockError, acquire_instance_lock, describe_lock_holder
from .logging_setup import BASE_LOGGER, MOVEMENT_LOGGER, PERFORMANCE_LOGGER, setup_logging
from .resource_monitor import ResourceMonitor

__all__ = [
    "setup_logging",
    "ResourceMonitor",
    "InstanceLock",
    "InstanceLockError",
    "acquire_instance_lock",
    "describe_lock_holder",
    "BASE_LOGGER",
    "MOVEMENT_LOGGER",
    "PERFORMANCE_LOGGER",
]
