"""
Abstract interfaces for the engine's external collaborators.
"""

from .data_store import DataStore
from .transport import EmailTransport, WebhookTransport, WebhookResponse
from .schema_provider import SchemaProvider
from .script_runner import ScriptRunner
from .database import AutomationDatabase
from .notifications import NotificationHandler

__all__ = [
    'DataStore',
    'EmailTransport',
    'WebhookTransport',
    'WebhookResponse',
    'SchemaProvider',
    'ScriptRunner',
    'AutomationDatabase',
    'NotificationHandler',
]
