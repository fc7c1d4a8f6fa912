"""Tests for automation executor."""

import asyncio
import logging
import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from table_automation import config
from table_automation.actions import (
    ActionType,
    CallWebhookAction,
    CreateRecordAction,
    DelayAction,
    DeleteRecordAction,
    InvalidAction,
    LogMessageAction,
    RunScriptAction,
    SendEmailAction,
    StopExecutionAction,
    UpdateRecordAction,
)
from table_automation.errors import DataStoreError, ScriptError
from table_automation.executor import (
    ACTION_HANDLERS,
    ExecutionServices,
    execute_action,
    resume_automation,
    resume_due_runs,
    run_automation,
)
from table_automation.filters import FilterCondition, FilterGroup
from table_automation.interfaces import (
    AutomationDatabase,
    DataStore,
    EmailTransport,
    NotificationHandler,
    ScriptRunner,
    WebhookResponse,
    WebhookTransport,
)
from table_automation.routing import GroupMatchPolicy
from table_automation.schema import TableSchema
from table_automation.types import (
    ActionGroup,
    Automation,
    ExecutionStatus,
    RunContinuation,
    StepKind,
    StepStatus,
    TriggerContext,
    TriggerType,
)


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


# Mock implementations for testing

class MockDataStore(DataStore):
    """In-memory record store."""

    def __init__(self):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {'tbl1': {'rec1': {'id': 'rec1', 'Name': 'Ada'}}}
        self.next_id = 100

    async def get_record(self, table_id: str, record_id: str) -> Optional[Dict[str, Any]]:
        return self.tables.get(table_id, {}).get(record_id)

    async def update_record(self, table_id: str, record_id: str, fields: Dict[str, Any]) -> str:
        if table_id not in self.tables:
            raise DataStoreError(f"Table {table_id} not found")
        if record_id not in self.tables[table_id]:
            raise DataStoreError(f"Record {record_id} not found")
        self.tables[table_id][record_id].update(fields)
        return record_id

    async def create_record(self, table_id: str, fields: Dict[str, Any]) -> str:
        record_id = f"rec{self.next_id}"
        self.next_id += 1
        self.tables.setdefault(table_id, {})[record_id] = {'id': record_id, **fields}
        return record_id

    async def delete_record(self, table_id: str, record_id: str) -> str:
        if record_id not in self.tables.get(table_id, {}):
            raise DataStoreError(f"Record {record_id} not found")
        del self.tables[table_id][record_id]
        return record_id


class MockEmailTransport(EmailTransport):

    def __init__(self):
        self.sent = []

    async def send_email(self, to: List[str], cc: List[str], bcc: List[str], subject: str, body: str) -> None:
        self.sent.append({'to': to, 'cc': cc, 'bcc': bcc, 'subject': subject, 'body': body})


class MockWebhookTransport(WebhookTransport):

    def __init__(self, status: int = 200, body: Any = None):
        self.status = status
        self.body = body if body is not None else {'ok': True}
        self.calls = []

    async def call_webhook(self, url: str, method: str = "POST", json_body: Any = None,
                           headers: Optional[Dict[str, str]] = None) -> WebhookResponse:
        self.calls.append({'url': url, 'method': method, 'body': json_body, 'headers': headers})
        return WebhookResponse(status=self.status, body=self.body)


class SlowWebhookTransport(WebhookTransport):

    async def call_webhook(self, url, method="POST", json_body=None, headers=None) -> WebhookResponse:
        await asyncio.sleep(5)
        return WebhookResponse(status=200, body=None)


class MockScriptRunner(ScriptRunner):

    async def run(self, code: str, context: Dict[str, Any]) -> Any:
        if 'raise' in code:
            raise ScriptError("Script failed: boom")
        return {'length': len(context['record'])}


class MockDatabase(AutomationDatabase):

    def __init__(self):
        self.runs = []
        self.continuations: Dict[str, Dict[str, Any]] = {}

    async def log_run(self, automation_id: str, run: Dict[str, Any]) -> str:
        self.runs.append(run)
        return run['run_id']

    async def save_continuation(self, continuation: Dict[str, Any]) -> str:
        self.continuations[continuation['run_id']] = continuation
        return continuation['run_id']

    async def due_continuations(self, now: datetime) -> List[Dict[str, Any]]:
        return [c for c in self.continuations.values() if datetime.fromisoformat(c['resume_at']) <= now]

    async def delete_continuation(self, run_id: str) -> None:
        self.continuations.pop(run_id, None)


class MockNotificationHandler(NotificationHandler):

    def __init__(self):
        self.notifications = []

    async def notify_automation_failed(self, automation_id: str, automation_name: str,
                                       error_summary: Optional[str] = None) -> None:
        self.notifications.append({
            'automation_id': automation_id,
            'automation_name': automation_name,
            'error': error_summary,
        })


# Fixtures

@pytest.fixture
def services():
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    result = ExecutionServices(
        data_store=MockDataStore(),
        email_transport=MockEmailTransport(),
        webhook_transport=MockWebhookTransport(),
        script_runner=MockScriptRunner(),
        database=MockDatabase(),
        notification_handler=MockNotificationHandler(),
        clock=lambda: NOW,
        sleep=fake_sleep,
    )
    result.sleeps = sleeps
    return result


@pytest.fixture
def context():
    return TriggerContext(
        record={'id': 'rec1', 'Name': 'Ada', 'Status': 'Open', 'Priority': 5},
        record_id='rec1',
        table_id='tbl1',
        triggered_at=NOW,
        user='owner@example.com',
        trigger_type=TriggerType.ROW_CREATED,
        automation_id='auto1',
    )


def make_automation(actions=None, groups=None, condition=None, enabled=True):
    if groups is None:
        groups = [ActionGroup(id='g0', actions=actions or [])]
    return Automation(
        id='auto1',
        name='Test automation',
        trigger_type=TriggerType.ROW_CREATED,
        condition=condition,
        action_groups=groups,
        enabled=enabled,
        table_id='tbl1',
    )


def action_steps(trace):
    return [s for s in trace.steps if s.kind == StepKind.ACTION]


# Tests

class TestActionHandlers:
    """Tests for individual action types."""

    def test_every_action_type_has_a_handler(self):
        assert set(ACTION_HANDLERS) == set(ActionType)

    @pytest.mark.asyncio
    async def test_update_record_defaults_to_trigger_record(self, services, context):
        action = UpdateRecordAction(field_updates={'Status': 'Seen by {{USER()}}'})
        result = await execute_action(action, context, services)
        assert result.success is True
        assert result.output == {'record_id': 'rec1', 'updated': True}
        assert services.data_store.tables['tbl1']['rec1']['Status'] == 'Seen by owner@example.com'

    @pytest.mark.asyncio
    async def test_update_record_coerces_typed_fields(self, services, context):
        services.schema = TableSchema.from_list([
            {'id': 'Priority', 'name': 'Priority', 'type': 'number'},
            {'id': 'Done', 'name': 'Done', 'type': 'checkbox'},
        ])
        action = UpdateRecordAction(field_updates={'Priority': '{{Priority}}', 'Done': 'true'})
        await execute_action(action, context, services)
        record = services.data_store.tables['tbl1']['rec1']
        assert record['Priority'] == 5
        assert record['Done'] is True

    @pytest.mark.asyncio
    async def test_update_missing_record_fails_with_store_error(self, services, context):
        action = UpdateRecordAction(record_id='nope', field_updates={'Status': 'x'})
        result = await execute_action(action, context, services)
        assert result.success is False
        assert result.error == 'Record nope not found'

    @pytest.mark.asyncio
    async def test_create_and_delete_record(self, services, context):
        created = await execute_action(CreateRecordAction(field_updates={'Name': 'Copy of {{Name}}'}), context, services)
        assert created.success is True
        new_id = created.output['record_id']
        assert services.data_store.tables['tbl1'][new_id]['Name'] == 'Copy of Ada'

        deleted = await execute_action(DeleteRecordAction(record_id=new_id), context, services)
        assert deleted.success is True
        assert new_id not in services.data_store.tables['tbl1']

    @pytest.mark.asyncio
    async def test_send_email(self, services, context):
        action = SendEmailAction(to='a@example.com; b@example.com', subject='Hi {{Name}}', body='Status: {{Status}}')
        result = await execute_action(action, context, services)
        assert result.success is True
        assert services.email_transport.sent == [{
            'to': ['a@example.com', 'b@example.com'],
            'cc': [],
            'bcc': [],
            'subject': 'Hi Ada',
            'body': 'Status: Open',
        }]

    @pytest.mark.asyncio
    async def test_send_email_invalid_address(self, services, context):
        result = await execute_action(SendEmailAction(to='nobody'), context, services)
        assert result.success is False
        assert result.error == 'Invalid email address: nobody'
        assert services.email_transport.sent == []

    @pytest.mark.asyncio
    async def test_webhook_success(self, services, context):
        action = CallWebhookAction(url='https://example.com/hook', body={'name': '{{Name}}'})
        result = await execute_action(action, context, services)
        assert result.success is True
        assert result.output == {'status': 200, 'body': {'ok': True}}
        assert services.webhook_transport.calls[0]['body'] == {'name': 'Ada'}

    @pytest.mark.asyncio
    async def test_webhook_non_2xx_fails(self, services, context):
        services.webhook_transport = MockWebhookTransport(status=500, body='oops')
        result = await execute_action(CallWebhookAction(url='https://example.com/hook'), context, services)
        assert result.success is False
        assert result.error == 'Webhook returned 500'

    @pytest.mark.asyncio
    async def test_webhook_rejects_non_http_url(self, services, context):
        result = await execute_action(CallWebhookAction(url='file:///etc/passwd'), context, services)
        assert result.success is False
        assert result.error == 'Only HTTP and HTTPS URLs are allowed'
        assert services.webhook_transport.calls == []

    @pytest.mark.asyncio
    async def test_action_timeout(self, services, context):
        services.webhook_transport = SlowWebhookTransport()
        result = await execute_action(CallWebhookAction(url='https://example.com'), context, services, timeout=0.01)
        assert result.success is False
        assert 'timed out' in result.error

    @pytest.mark.asyncio
    async def test_run_script(self, services, context):
        result = await execute_action(RunScriptAction(script='return 1'), context, services)
        assert result.success is True
        assert result.output == {'result': {'length': 4}}

        failed = await execute_action(RunScriptAction(script='raise'), context, services)
        assert failed.success is False
        assert failed.error == 'Script failed: boom'

    @pytest.mark.asyncio
    async def test_missing_collaborator_fails(self, context):
        result = await execute_action(SendEmailAction(to='a@example.com'), context, ExecutionServices())
        assert result.success is False
        assert result.error == 'No email transport configured'

    @pytest.mark.asyncio
    async def test_log_message(self, services, context, caplog):
        with caplog.at_level(logging.WARNING, logger='table_automation.executor'):
            result = await execute_action(LogMessageAction(message='Hello {{Name}}', level='warning'), context, services)
        assert result.success is True
        assert 'Hello Ada' in caplog.text

    @pytest.mark.asyncio
    async def test_invalid_action_fails(self, services, context):
        result = await execute_action(InvalidAction(raw_type='teleport', error='Unknown action type: teleport'), context, services)
        assert result.success is False
        assert result.action_type == 'teleport'

    @pytest.mark.asyncio
    async def test_short_delay_sleeps_inline(self, services, context):
        result = await execute_action(DelayAction(delay_type='seconds', delay_value=5), context, services)
        assert result.success is True
        assert result.resume_at is None
        assert services.sleeps == [5]

    @pytest.mark.asyncio
    async def test_long_delay_requests_suspension(self, services, context):
        result = await execute_action(DelayAction(delay_type='hours', delay_value=2), context, services)
        assert result.success is True
        assert result.resume_at == NOW + timedelta(hours=2)
        assert services.sleeps == []

    @pytest.mark.asyncio
    async def test_delay_until(self, services, context):
        result = await execute_action(
            DelayAction(delay_type='until', until_datetime='2024-05-02T12:00:00Z'), context, services
        )
        assert result.resume_at == NOW + timedelta(days=1)

        past = await execute_action(
            DelayAction(delay_type='until', until_datetime='2024-04-01T00:00:00Z'), context, services
        )
        assert past.success is True
        assert past.resume_at is None


class TestRunAutomation:
    """Tests for run_automation."""

    @pytest.mark.asyncio
    async def test_simple_run(self, services, context):
        automation = make_automation([LogMessageAction(message='Created {{Name}}')])
        trace = await run_automation(automation, context, services)

        assert trace.success is True
        assert trace.status == ExecutionStatus.COMPLETED
        assert trace.actions_executed == 1
        assert trace.actions_failed == 0
        assert trace.steps[0].kind == StepKind.TRIGGER
        assert all(s.status == StepStatus.COMPLETED for s in trace.steps)
        assert services.database.runs[0]['status'] == 'completed'

    @pytest.mark.asyncio
    async def test_fail_fast(self, services, context):
        """A failing action halts the run; later actions stay pending."""
        services.webhook_transport = MockWebhookTransport(status=502)
        automation = make_automation([
            LogMessageAction(message='one'),
            CallWebhookAction(url='https://example.com/hook'),
            LogMessageAction(message='three'),
        ])
        trace = await run_automation(automation, context, services)

        steps = action_steps(trace)
        assert [s.status for s in steps] == [StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.PENDING]
        assert steps[1].error == 'Webhook returned 502'
        assert steps[1].suggestion is not None
        assert trace.summary()['success'] is False
        assert trace.status == ExecutionStatus.FAILED
        assert trace.actions_executed == 2
        assert context.action_results['last_error'] == 'Webhook returned 502'
        assert services.notification_handler.notifications[0]['automation_id'] == 'auto1'

    @pytest.mark.asyncio
    async def test_disabled_automation_is_skipped(self, services, context):
        trace = await run_automation(make_automation([LogMessageAction(message='x')], enabled=False), context, services)
        assert trace.status == ExecutionStatus.SKIPPED
        assert trace.actions_executed == 0

    @pytest.mark.asyncio
    async def test_trigger_mismatch_is_skipped(self, services, context):
        automation = make_automation([LogMessageAction(message='x')])
        automation.trigger_type = TriggerType.ROW_DELETED
        trace = await run_automation(automation, context, services)
        assert trace.status == ExecutionStatus.SKIPPED
        assert trace.steps[0].data == {'fired': False}

    @pytest.mark.asyncio
    async def test_top_level_condition(self, services, context):
        condition = FilterGroup(children=[FilterCondition('Status', 'equal', 'Done')])
        trace = await run_automation(make_automation([LogMessageAction(message='x')], condition=condition), context, services)
        assert trace.status == ExecutionStatus.SKIPPED
        assert trace.steps[1].kind == StepKind.CONDITION
        assert trace.steps[1].message == 'Conditions not met'
        assert trace.steps[1].data['formula'] == '{Status} = "Done"'

    @pytest.mark.asyncio
    async def test_routes_first_matching_group(self, services, context):
        groups = [
            ActionGroup(id='done', order=0, condition=FilterGroup(children=[FilterCondition('Status', 'equal', 'Done')]),
                        actions=[LogMessageAction(message='done')]),
            ActionGroup(id='open', order=1, condition=FilterGroup(children=[FilterCondition('Status', 'equal', 'Open')]),
                        actions=[LogMessageAction(message='open')]),
            ActionGroup(id='always', order=2, actions=[LogMessageAction(message='always')]),
        ]
        trace = await run_automation(make_automation(groups=groups), context, services)
        outputs = [r.output['message'] for r in trace.action_results]
        assert outputs == ['open']
        condition_names = [s.name for s in trace.steps if s.kind == StepKind.CONDITION]
        assert condition_names == ['If Status is Done', 'Otherwise if Status is Open']

        trace = await run_automation(make_automation(groups=groups), context, services,
                                     policy=GroupMatchPolicy.ALL_MATCHES)
        assert [r.output['message'] for r in trace.action_results] == ['open', 'always']

    @pytest.mark.asyncio
    async def test_no_group_matches(self, services, context):
        groups = [ActionGroup(id='g', condition=FilterGroup(children=[FilterCondition('Missing', 'is_empty')]),
                              actions=[LogMessageAction(message='x')])]
        trace = await run_automation(make_automation(groups=groups), context, services)
        assert trace.status == ExecutionStatus.SKIPPED
        assert trace.actions_executed == 0

    @pytest.mark.asyncio
    async def test_results_flow_to_later_actions(self, services, context):
        automation = make_automation([
            CallWebhookAction(url='https://example.com/a', output_as='hook'),
            CreateRecordAction(field_updates={'Name': 'from {{hook.status}}'}),
            LogMessageAction(message='{{action_0_result.status}} {{last_record_id}}'),
        ])
        trace = await run_automation(automation, context, services)
        assert trace.success is True
        new_id = trace.action_results[1].output['record_id']
        assert services.data_store.tables['tbl1'][new_id]['Name'] == 'from 200'
        assert trace.action_results[2].output['message'] == f'200 {new_id}'

    @pytest.mark.asyncio
    async def test_stop_execution(self, services, context):
        automation = make_automation([
            StopExecutionAction(reason='nothing to do'),
            LogMessageAction(message='never'),
        ])
        trace = await run_automation(automation, context, services)
        assert trace.status == ExecutionStatus.STOPPED
        assert trace.success is True
        assert [s.status for s in action_steps(trace)] == [StepStatus.COMPLETED, StepStatus.PENDING]

    @pytest.mark.asyncio
    async def test_dry_run_has_no_side_effects(self, services, context):
        automation = make_automation([
            UpdateRecordAction(field_updates={'Status': 'Done'}),
            SendEmailAction(to='a@example.com', subject='x'),
            CallWebhookAction(url='https://example.com'),
            DelayAction(delay_type='hours', delay_value=3),
            LogMessageAction(message='end'),
        ])
        trace = await run_automation(automation, context, services, dry_run=True)
        assert trace.status == ExecutionStatus.COMPLETED
        assert trace.dry_run is True
        assert action_steps(trace)[0].message == 'Would update record rec1'
        assert services.data_store.tables['tbl1']['rec1'].get('Status') is None
        assert services.email_transport.sent == []
        assert services.webhook_transport.calls == []
        assert services.sleeps == []
        assert services.database.runs == []

    @pytest.mark.asyncio
    async def test_trace_serializes(self, services, context):
        trace = await run_automation(make_automation([LogMessageAction(message='x')]), context, services)
        data = trace.to_dict()
        assert data['status'] == 'completed'
        assert data['steps'][0]['kind'] == 'trigger'
        assert data['action_results'][0]['action_type'] == 'log_message'


class TestSuspendAndResume:
    """Tests for long delays and resumption."""

    @pytest.mark.asyncio
    async def test_long_delay_suspends_run(self, services, context):
        automation = make_automation([
            LogMessageAction(message='before'),
            DelayAction(delay_type='minutes', delay_value=30),
            LogMessageAction(message='after {{Name}}'),
        ])
        trace = await run_automation(automation, context, services)

        assert trace.status == ExecutionStatus.SUSPENDED
        assert trace.success is True
        continuation = trace.continuation
        assert continuation.resume_at == NOW + timedelta(minutes=30)
        assert continuation.next_action_index == 2
        assert continuation.remaining_actions == [
            {'type': 'log_message', 'message': 'after {{Name}}', 'level': 'info'},
        ]
        assert trace.run_id in services.database.continuations

    @pytest.mark.asyncio
    async def test_resume_runs_remaining_actions(self, services, context):
        automation = make_automation([
            DelayAction(delay_type='hours', delay_value=1),
            LogMessageAction(message='after {{Name}}'),
        ])
        suspended = await run_automation(automation, context, services)
        resumed = await resume_automation(automation, suspended.continuation, services)

        assert resumed.run_id == suspended.run_id
        assert resumed.status == ExecutionStatus.COMPLETED
        assert resumed.action_results[0].output['message'] == 'after Ada'
        assert action_steps(resumed)[0].name == 'Action 2: log_message'
        assert services.database.continuations == {}

    @pytest.mark.asyncio
    async def test_second_long_delay_keeps_new_continuation(self, services, context):
        automation = make_automation([
            DelayAction(delay_type='hours', delay_value=1),
            LogMessageAction(message='first'),
            DelayAction(delay_type='hours', delay_value=1),
            LogMessageAction(message='second'),
        ])
        suspended = await run_automation(automation, context, services)
        resumed = await resume_automation(automation, suspended.continuation, services)

        assert resumed.status == ExecutionStatus.SUSPENDED
        stored = services.database.continuations[suspended.run_id]
        assert stored['next_action_index'] == 3
        assert stored['remaining_actions'] == [
            {'type': 'log_message', 'message': 'second', 'level': 'info'},
        ]

        final = await resume_automation(automation, RunContinuation.from_dict(stored), services)
        assert final.status == ExecutionStatus.COMPLETED
        assert final.action_results[0].output['message'] == 'second'
        assert services.database.continuations == {}

    @pytest.mark.asyncio
    async def test_resume_of_disabled_automation_is_cancelled(self, services, context):
        automation = make_automation([
            DelayAction(delay_type='hours', delay_value=1),
            LogMessageAction(message='after'),
        ])
        suspended = await run_automation(automation, context, services)
        automation.enabled = False
        resumed = await resume_automation(automation, suspended.continuation, services)

        assert resumed.status == ExecutionStatus.CANCELLED
        assert resumed.actions_executed == 0
        assert services.database.continuations == {}

    @pytest.mark.asyncio
    async def test_continuation_round_trips_through_json_shape(self, services, context):
        automation = make_automation([
            DelayAction(delay_type='hours', delay_value=1),
            LogMessageAction(message='{{record_id}}'),
        ])
        suspended = await run_automation(automation, context, services)
        restored = RunContinuation.from_dict(suspended.continuation.to_dict())
        resumed = await resume_automation(automation, restored, services)
        assert resumed.action_results[0].output['message'] == 'rec1'

    @pytest.mark.asyncio
    async def test_resume_due_runs(self, services, context):
        automation = make_automation([
            DelayAction(delay_type='hours', delay_value=1),
            LogMessageAction(message='later'),
        ])
        await run_automation(automation, context, services)

        async def load_automation(automation_id):
            return automation if automation_id == 'auto1' else None

        assert await resume_due_runs(load_automation, services, now=NOW) == []
        traces = await resume_due_runs(load_automation, services, now=NOW + timedelta(hours=2))
        assert [t.status for t in traces] == [ExecutionStatus.COMPLETED]
