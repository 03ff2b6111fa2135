from .client import DEVICE_MODES, FAN_MODES, WattsApiClient
from .device_cache import CacheEntry, DeviceStatusCache
from .envelope import ApiEnvelope, parse_envelope
from .executor import RETRYABLE_STATUSES, RequestExecutor, RequestSpec, Retryable, Success, Terminal

__all__ = [
    "ApiEnvelope",
    "CacheEntry",
    "DEVICE_MODES",
    "DeviceStatusCache",
    "FAN_MODES",
    "RETRYABLE_STATUSES",
    "RequestExecutor",
    "RequestSpec",
    "Retryable",
    "Success",
    "Terminal",
    "WattsApiClient",
    "parse_envelope",
]
