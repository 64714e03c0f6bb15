"""Unit tests for the job queue: deterministic ids, dedup locks, routing."""

import pytest

from app.hosting.errors import DuplicateJobError
from app.hosting.record import HostingType
from app.tests.fakes import FakeRedis, RecordingSender
from app.workers.queue import LOCK_PREFIX, RETRY_POLICIES, JobQueue, job_id_for, task_name_for


class TestJobIds:
    def test_deterministic(self):
        assert job_id_for("provision", HostingType.STATIC, 12) == "provision-static-12"
        assert job_id_for("terminate", "dynamic", 3) == "terminate-dynamic-3"

    def test_task_names(self):
        assert task_name_for("provision", HostingType.DYNAMIC) == "hosting.provision_dynamic"

    def test_retry_policies(self):
        assert RETRY_POLICIES[HostingType.STATIC].max_retries == 2
        assert RETRY_POLICIES[HostingType.DYNAMIC].max_retries == 1


class TestJobQueue:
    def test_enqueue_routes_to_type_queue(self):
        sender = RecordingSender()
        queue = JobQueue(FakeRedis(), send=sender, lock_ttl=60)

        job_id = queue.enqueue_provision(7, HostingType.DYNAMIC, {"database_enabled": True})

        assert job_id == "provision-dynamic-7"
        sent = sender.sent[0]
        assert sent["name"] == "hosting.provision_dynamic"
        assert sent["task_id"] == job_id
        assert sent["queue"] == "dynamic-hosting"
        assert sent["args"] == [7]
        assert sent["kwargs"] == {"options": {"database_enabled": True}}
        assert queue.is_pending(job_id)

    def test_duplicate_is_rejected_until_released(self):
        redis = FakeRedis()
        sender = RecordingSender()
        queue = JobQueue(redis, send=sender, lock_ttl=60)
        queue.enqueue_provision(1, HostingType.STATIC)

        with pytest.raises(DuplicateJobError) as exc_info:
            queue.enqueue_provision(1, HostingType.STATIC)
        assert exc_info.value.job_id == "provision-static-1"
        assert len(sender.sent) == 1

        queue.release("provision-static-1")
        queue.enqueue_provision(1, HostingType.STATIC)
        assert len(sender.sent) == 2

    def test_lock_has_ttl(self):
        redis = FakeRedis()
        JobQueue(redis, send=RecordingSender(), lock_ttl=90).enqueue_terminate(4, HostingType.STATIC)
        assert redis.ttls[LOCK_PREFIX + "terminate-static-4"] == 90

    def test_failed_dispatch_releases_lock(self):
        queue = JobQueue(FakeRedis(), send=RecordingSender(exc=ConnectionError("broker down")), lock_ttl=60)

        with pytest.raises(ConnectionError):
            queue.enqueue_provision(5, HostingType.STATIC)
        assert not queue.is_pending("provision-static-5")


class TestWorkerArgv:
    def test_queue_concurrency(self):
        from app.workers.worker import worker_argv

        argv = worker_argv("static-hosting")
        assert argv[argv.index("--queues") + 1] == "static-hosting"
        assert argv[argv.index("--concurrency") + 1] == "3"
        assert "--beat" not in argv
        assert worker_argv("dynamic-hosting")[4] == "2"

    def test_unknown_queue(self):
        from app.workers.worker import worker_argv

        with pytest.raises(ValueError):
            worker_argv("default")
