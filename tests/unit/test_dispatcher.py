"""Unit tests for the scheduled-call dispatcher."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from outbound_caller.core.exceptions import ConfigError
from outbound_caller.db.models import Lead, ScheduledTask
from outbound_caller.services.call_session.locks import CallLockRegistry
from outbound_caller.services.call_session.manager import CallSessionManager
from outbound_caller.services.call_session.reconciler import StatusReconciler
from outbound_caller.services.persistence.calls import CallPersistenceService
from outbound_caller.services.persistence.tasks import TaskPersistenceService
from outbound_caller.services.scheduling.dispatcher import ScheduledCallDispatcher
from tests.fakes import TEST_BASE_URL, FakeTelephony

NOW = datetime(2026, 3, 2, 10, 0, 0)


async def _task(test_db, task_id) -> ScheduledTask:
    result = await test_db.execute(
        select(ScheduledTask)
        .where(ScheduledTask.id == task_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


def _dispatcher(test_db, conversation_engine, telephony) -> ScheduledCallDispatcher:
    manager = CallSessionManager(test_db, conversation_engine, telephony, TEST_BASE_URL, locks=CallLockRegistry())
    return ScheduledCallDispatcher(test_db, manager, StatusReconciler(test_db, manager))


class TestSelection:
    """Test which tasks a run picks up."""

    @pytest.mark.asyncio
    async def test_only_pending_call_tasks_within_tolerance(self, dispatcher, fake_telephony, make_task):
        due = await make_task(scheduled_at=NOW - timedelta(minutes=4))
        soon = await make_task(scheduled_at=NOW + timedelta(minutes=5))
        await make_task(scheduled_at=NOW - timedelta(minutes=6))
        await make_task(scheduled_at=NOW + timedelta(minutes=10))
        await make_task(scheduled_at=NOW, status="completed")
        await make_task(scheduled_at=NOW, task_type="email")

        report = await dispatcher.run(now=NOW)

        assert report.processed == 2
        assert [r.task_id for r in report.results] == [due.id, soon.id]
        assert len(fake_telephony.placed) == 2

    @pytest.mark.asyncio
    async def test_configurable_tolerance(self, test_db, session_manager, reconciler, make_task):
        await make_task(scheduled_at=NOW - timedelta(minutes=20))
        dispatcher = ScheduledCallDispatcher(
            test_db, session_manager, reconciler, tolerance=timedelta(minutes=30)
        )

        report = await dispatcher.run(now=NOW)

        assert report.processed == 1

    @pytest.mark.asyncio
    async def test_nothing_due(self, dispatcher, lead):
        report = await dispatcher.run(now=NOW)

        assert report.processed == 0
        assert report.results == []


class TestDispatch:
    """Test placing and failing tasks."""

    @pytest.mark.asyncio
    async def test_successful_placement(self, dispatcher, test_db, make_task):
        task = await make_task(scheduled_at=NOW)

        report = await dispatcher.run(now=NOW)

        result = report.results[0]
        assert result.success
        assert result.status == "initiated"
        assert result.lead_name == "Priya Sharma"
        assert (await _task(test_db, task.id)).status == "in_progress"
        call_session = await CallPersistenceService(test_db).get_call_session(result.call_id)
        assert call_session.task_id == task.id
        assert call_session.status == "initiated"

    @pytest.mark.asyncio
    async def test_second_run_does_not_redial(self, dispatcher, fake_telephony, make_task):
        await make_task(scheduled_at=NOW)

        first = await dispatcher.run(now=NOW)
        second = await dispatcher.run(now=NOW)

        assert first.processed == 1
        assert second.processed == 0
        assert len(fake_telephony.placed) == 1

    @pytest.mark.asyncio
    async def test_provider_error_fails_task_and_continues(
        self, test_db, conversation_engine, failing_telephony, make_task
    ):
        first = await make_task(scheduled_at=NOW - timedelta(minutes=1))
        second = await make_task(scheduled_at=NOW)
        task_ids = [first.id, second.id]
        dispatcher = _dispatcher(test_db, conversation_engine, failing_telephony)

        report = await dispatcher.run(now=NOW)

        assert report.processed == 2
        assert [r.status for r in report.results] == ["failed", "failed"]
        assert "ProviderError" in report.results[0].message
        for task_id in task_ids:
            resolved = await _task(test_db, task_id)
            assert resolved.status == "failed"
            assert resolved.result_metadata["call_status"] == "not_placed"
        assert await CallPersistenceService(test_db).list_call_sessions() == []

    @pytest.mark.asyncio
    async def test_invalid_number_fails_only_that_task(self, dispatcher, test_db, company, make_task):
        bad_lead = Lead(company_id=company.id, name="Wrong Number", phone="12345")
        test_db.add(bad_lead)
        await test_db.commit()
        bad = await make_task(scheduled_at=NOW - timedelta(minutes=1), task_lead=bad_lead)
        good = await make_task(scheduled_at=NOW)
        bad_id, good_id = bad.id, good.id

        report = await dispatcher.run(now=NOW)

        by_task = {r.task_id: r for r in report.results}
        assert not by_task[bad_id].success
        assert "InvalidNumber" in by_task[bad_id].message
        assert by_task[good_id].success
        assert (await _task(test_db, bad_id)).status == "failed"
        assert (await _task(test_db, good_id)).status == "in_progress"

    @pytest.mark.asyncio
    async def test_missing_telephony_config_fails_task(self, test_db, conversation_engine, make_task):
        task = await make_task(scheduled_at=NOW)
        telephony = FakeTelephony(error=ConfigError("Twilio is not configured"))
        task_id = task.id

        report = await _dispatcher(test_db, conversation_engine, telephony).run(now=NOW)

        assert "ConfigError" in report.results[0].message
        assert (await _task(test_db, task_id)).status == "failed"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_collected(self, test_db, conversation_engine, make_task):
        task = await make_task(scheduled_at=NOW)
        telephony = FakeTelephony(error=RuntimeError("connection reset"))
        task_id = task.id

        report = await _dispatcher(test_db, conversation_engine, telephony).run(now=NOW)

        assert report.results[0].status == "failed"
        assert "connection reset" in report.results[0].message
        assert (await _task(test_db, task_id)).status == "failed"


class TestClaim:
    """Test that a task can only be claimed once."""

    @pytest.mark.asyncio
    async def test_interleaved_claims_have_one_winner(self, session_factory, make_task):
        task = await make_task(scheduled_at=NOW)

        async with session_factory() as first, session_factory() as second:
            first_tasks = await TaskPersistenceService(first).get_due_call_tasks(NOW, timedelta(minutes=5))
            second_tasks = await TaskPersistenceService(second).get_due_call_tasks(NOW, timedelta(minutes=5))
            assert [t.id for t in first_tasks] == [task.id]
            assert [t.id for t in second_tasks] == [task.id]

            first_claimed = await TaskPersistenceService(first).claim_task(task.id)
            second_claimed = await TaskPersistenceService(second).claim_task(task.id)

        assert first_claimed is True
        assert second_claimed is False

    @pytest.mark.asyncio
    async def test_lost_claim_is_reported_as_skipped(
        self, session_factory, conversation_engine, make_task, monkeypatch
    ):
        await make_task(scheduled_at=NOW)
        telephony = FakeTelephony()
        original_claim = TaskPersistenceService.claim_task

        async with session_factory() as rival, session_factory() as db:
            # Another run claims the task between selection and claim
            async def claim_after_rival(self, task_id):
                await original_claim(TaskPersistenceService(rival), task_id)
                return await original_claim(self, task_id)

            monkeypatch.setattr(TaskPersistenceService, "claim_task", claim_after_rival)
            report = await _dispatcher(db, conversation_engine, telephony).run(now=NOW)

        assert report.processed == 0
        assert report.results[0].status == "skipped"
        assert not report.results[0].success
        assert telephony.placed == []
