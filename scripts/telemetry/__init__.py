"""
Telemetry package for the analytics SDK.

Durably buffers host events, uploads them in batches with retry, caches
engagement responses and evaluates server-delivered event triggers.
"""

from .schema import (
    Event,
    Engagement,
    EventTrigger,
    SessionConfig,
    decode_session_config,
)
from .errors import TelemetryError, NotStartedError, ConfigurationError
from .event_store import EventStore
from .engage_cache import EngageCache, fingerprint
from .action_store import ActionStore
from .triggers import EventAction, TriggerEvaluator, evaluate_condition
from .transport import Transport, TransportResponse, RequestsTransport
from .uploader import EventUploader, UploadResult, UploadState
from .engage import EngageClient, EngageResponse
from .notifications import NotificationSink
from .context import ClientInfo, get_client_info
from .collector import TelemetryCollector, get_collector

__all__ = [
    # Schemas
    'Event',
    'Engagement',
    'EventTrigger',
    'SessionConfig',
    'decode_session_config',
    # Errors
    'TelemetryError',
    'NotStartedError',
    'ConfigurationError',
    # Stores
    'EventStore',
    'EngageCache',
    'fingerprint',
    'ActionStore',
    # Triggers
    'EventAction',
    'TriggerEvaluator',
    'evaluate_condition',
    # Network
    'Transport',
    'TransportResponse',
    'RequestsTransport',
    'EventUploader',
    'UploadResult',
    'UploadState',
    'EngageClient',
    'EngageResponse',
    # Host integration
    'NotificationSink',
    'ClientInfo',
    'get_client_info',
    'TelemetryCollector',
    'get_collector',
]

__version__ = '1.0.0'
