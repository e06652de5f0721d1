"""
Persistence and configuration utilities for the analytics SDK.

This package provides common utilities used across the telemetry pipeline:
- jsonl_utils: locked JSONL reading/writing and atomic JSON replacement
- kv_store: small persistent key-value store for session scalars
- config: unified configuration management
"""

from .jsonl_utils import (
    JSONLReader,
    JSONLWriter,
    read_json,
    write_json_atomic,
    is_directory_writable,
)
from .kv_store import KeyValueStore
from .config import SDKConfig, config, SDK_VERSION

__all__ = [
    'JSONLReader',
    'JSONLWriter',
    'read_json',
    'write_json_atomic',
    'is_directory_writable',
    'KeyValueStore',
    'SDKConfig',
    'config',
    'SDK_VERSION',
]

__version__ = SDK_VERSION
