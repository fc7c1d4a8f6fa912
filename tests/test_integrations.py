"""Tests for the Supabase, HTTP and SMTP collaborators."""

import pytest
import requests
from datetime import datetime, timezone
from unittest.mock import MagicMock

from table_automation.errors import DataStoreError, TransportError
from table_automation.integrations import (
    RequestsWebhookTransport,
    SmtpEmailTransport,
    SupabaseAutomationDatabase,
    SupabaseDataStore,
)
from table_automation.integrations import smtp_email


def supabase_result(data):
    result = MagicMock()
    result.data = data
    return result


class FakeResponse:

    def __init__(self, status_code, payload=None, text=''):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON")
        return self._payload


class FakeSession:

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error:
            raise self.error
        return self.response


class TestRequestsWebhookTransport:
    """Tests for RequestsWebhookTransport."""

    @pytest.mark.asyncio
    async def test_posts_json(self):
        session = FakeSession(FakeResponse(201, {'id': 1}))
        transport = RequestsWebhookTransport(timeout=5, session=session)
        response = await transport.call_webhook('https://example.com/hook', 'post', {'a': 1}, {'X-Token': 't'})

        assert response.status == 201
        assert response.ok is True
        assert response.body == {'id': 1}
        method, url, kwargs = session.calls[0]
        assert method == 'POST'
        assert kwargs['json'] == {'a': 1}
        assert kwargs['headers']['X-Token'] == 't'
        assert kwargs['timeout'] == 5

    @pytest.mark.asyncio
    async def test_text_body_and_error_status(self):
        transport = RequestsWebhookTransport(session=FakeSession(FakeResponse(500, text='oops')))
        response = await transport.call_webhook('https://example.com/hook', 'GET')
        assert response.ok is False
        assert response.body == 'oops'

    @pytest.mark.asyncio
    async def test_timeout_becomes_transport_error(self):
        transport = RequestsWebhookTransport(timeout=1, session=FakeSession(error=requests.Timeout()))
        with pytest.raises(TransportError, match='Webhook timeout'):
            await transport.call_webhook('https://example.com/hook')

    @pytest.mark.asyncio
    async def test_connection_error_becomes_transport_error(self):
        transport = RequestsWebhookTransport(session=FakeSession(error=requests.ConnectionError('refused')))
        with pytest.raises(TransportError, match='Network error'):
            await transport.call_webhook('https://example.com/hook')


class TestSmtpEmailTransport:
    """Tests for SmtpEmailTransport."""

    @pytest.mark.asyncio
    async def test_sends_to_all_recipients(self, monkeypatch):
        server = MagicMock()
        smtp_class = MagicMock()
        smtp_class.return_value.__enter__.return_value = server
        monkeypatch.setattr(smtp_email.smtplib, 'SMTP', smtp_class)

        transport = SmtpEmailTransport(smtp_host='mail.test', smtp_port=2525, username='u', password='p',
                                       from_addr='bot@example.com', use_tls=True)
        await transport.send_email(['a@example.com'], ['c@example.com'], ['b@example.com'], 'Subject', 'Body')

        smtp_class.assert_called_once_with('mail.test', 2525)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with('u', 'p')
        from_addr, recipients, message = server.sendmail.call_args[0]
        assert from_addr == 'bot@example.com'
        assert recipients == ['a@example.com', 'c@example.com', 'b@example.com']
        assert 'Subject: Subject' in message
        assert 'b@example.com' not in message

    @pytest.mark.asyncio
    async def test_smtp_failure_becomes_transport_error(self, monkeypatch):
        smtp_class = MagicMock(side_effect=OSError('unreachable'))
        monkeypatch.setattr(smtp_email.smtplib, 'SMTP', smtp_class)
        transport = SmtpEmailTransport(smtp_host='mail.test', use_tls=False)
        with pytest.raises(TransportError, match='Failed to send email'):
            await transport.send_email(['a@example.com'], [], [], 'S', 'B')


class TestSupabaseDataStore:
    """Tests for SupabaseDataStore."""

    def make_client(self):
        client = MagicMock()
        tables = client.table.return_value
        tables.select.return_value.eq.return_value.execute.return_value = supabase_result([{'supabase_table': 'tasks'}])
        return client

    @pytest.mark.asyncio
    async def test_update_record(self):
        client = self.make_client()
        client.table.return_value.update.return_value.eq.return_value.execute.return_value = supabase_result([{'id': 'rec1'}])
        store = SupabaseDataStore(client)

        assert await store.update_record('tbl1', 'rec1', {'Status': 'Done'}) == 'rec1'
        client.table.assert_any_call('tables')
        client.table.assert_any_call('tasks')
        client.table.return_value.update.assert_called_with({'Status': 'Done'})

    @pytest.mark.asyncio
    async def test_create_record(self):
        client = self.make_client()
        client.table.return_value.insert.return_value.execute.return_value = supabase_result([{'id': 42}])
        store = SupabaseDataStore(client)
        assert await store.create_record('tbl1', {'Name': 'Ada'}) == '42'

    @pytest.mark.asyncio
    async def test_unknown_table(self):
        client = MagicMock()
        client.table.return_value.select.return_value.eq.return_value.execute.return_value = supabase_result([])
        store = SupabaseDataStore(client)
        with pytest.raises(DataStoreError, match='Table tbl9 not found'):
            await store.delete_record('tbl9', 'rec1')

    @pytest.mark.asyncio
    async def test_client_errors_are_wrapped(self):
        client = self.make_client()
        client.table.return_value.delete.return_value.eq.return_value.execute.side_effect = RuntimeError('boom')
        store = SupabaseDataStore(client)
        with pytest.raises(DataStoreError, match='Failed to delete record: boom'):
            await store.delete_record('tbl1', 'rec1')


class TestSupabaseAutomationDatabase:
    """Tests for SupabaseAutomationDatabase."""

    @pytest.mark.asyncio
    async def test_log_run(self):
        client = MagicMock()
        client.table.return_value.upsert.return_value.execute.return_value = supabase_result([{'id': 'run1'}])
        database = SupabaseAutomationDatabase(client)
        run = {'run_id': 'run1', 'status': 'completed', 'error': None, 'duration_ms': 4}

        assert await database.log_run('auto1', run) == 'run1'
        client.table.assert_called_with('automation_runs')
        row = client.table.return_value.upsert.call_args[0][0]
        assert row['automation_id'] == 'auto1'
        assert row['trace'] == run

    @pytest.mark.asyncio
    async def test_due_continuations(self):
        client = MagicMock()
        query = client.table.return_value.select.return_value.lte.return_value.order.return_value
        query.execute.return_value = supabase_result([{'payload': {'run_id': 'run1'}}])
        database = SupabaseAutomationDatabase(client)

        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert await database.due_continuations(now) == [{'run_id': 'run1'}]
        client.table.return_value.select.return_value.lte.assert_called_with('resume_at', now.isoformat())
