"""
Concrete collaborators backed by Supabase, HTTP and SMTP.
"""

from .supabase_store import SupabaseAutomationDatabase, SupabaseDataStore, create_supabase_client
from .http_webhook import RequestsWebhookTransport
from .smtp_email import SmtpEmailTransport

__all__ = [
    'SupabaseDataStore',
    'SupabaseAutomationDatabase',
    'create_supabase_client',
    'RequestsWebhookTransport',
    'SmtpEmailTransport',
]
