"""
Tests for RQ job wiring. Redis is never contacted.
"""
from unittest.mock import MagicMock, patch

from freightflow.workers import jobs


class TestEnqueue:
    def test_pipeline_page_goes_to_default_queue(self):
        queue = MagicMock()
        queue.enqueue.return_value = MagicMock(id="job-1")
        with patch("freightflow.workers.jobs.get_queue", return_value=queue) as get_queue:
            job = jobs.enqueue_process_pending_messages(25)

        get_queue.assert_called_once_with("default")
        args, kwargs = queue.enqueue.call_args
        assert args == (jobs.process_pending_messages_job, 25)
        assert kwargs["job_timeout"] == 1800
        assert job.id == "job-1"

    def test_maintenance_jobs_go_to_low_queue(self):
        queue = MagicMock()
        with patch("freightflow.workers.jobs.get_queue", return_value=queue) as get_queue:
            jobs.enqueue_relink_orphans(10)
            jobs.enqueue_recompute_workflow_states()

        assert [c.args[0] for c in get_queue.call_args_list] == ["low", "low"]
        funcs = [c.args[0] for c in queue.enqueue.call_args_list]
        assert funcs == [jobs.relink_orphans_job, jobs.recompute_workflow_states_job]


class TestScheduler:
    def test_replaces_existing_schedule(self):
        """Old schedules are cancelled before the three recurring jobs are added."""
        scheduler = MagicMock()
        stale = MagicMock()
        scheduler.get_jobs.return_value = [stale]
        with patch("freightflow.workers.jobs.get_scheduler", return_value=scheduler):
            jobs.setup_scheduled_jobs()

        scheduler.cancel.assert_called_once_with(stale)
        intervals = {c.kwargs["func"]: c.kwargs["interval"] for c in scheduler.schedule.call_args_list}
        assert intervals == {
            jobs.process_pending_messages_job: 300,
            jobs.relink_orphans_job: 3600,
            jobs.recompute_workflow_states_job: 86400,
        }


class TestJobFunctions:
    def test_job_runs_in_db_context(self):
        db = MagicMock()
        context = MagicMock()
        context.__enter__.return_value = db
        with patch("freightflow.db.session.get_db_context", return_value=context), \
                patch("freightflow.services.pipeline.process_page", return_value={"processed": 0}) as process_page:
            result = jobs.process_pending_messages_job(10)

        process_page.assert_called_once_with(db, page_size=10)
        assert result == {"processed": 0}
