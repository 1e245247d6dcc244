"""Configuration store: repositories, credentials, scheduled jobs, sync logs."""

from .base import ConfigStore, StoreError
from .json_store import JsonFileStore
from .secrets import SecretBox, SecretError

__all__ = [
    "ConfigStore",
    "JsonFileStore",
    "SecretBox",
    "SecretError",
    "StoreError",
]
