from types import SimpleNamespace

import httpx
import pytest
from botocore.exceptions import ClientError
from postgrest.exceptions import APIError

from leadpipe.db import leads as leads_module
from leadpipe.db.leads import LeadStore
from leadpipe.errors import LeadNotFoundError, StorageError, WriteConflictError
from leadpipe.models import LeadStatus, ScoringResult
from leadpipe.utils.storage import ArtifactStore


class FakeQuery:
    """Records a postgrest builder chain; execute() pops the next scripted response."""

    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.ops = []

    def __getattr__(self, name):
        if name == "not_":
            self.ops.append(("not_",))
            return self

        def op(*args, **kwargs):
            self.ops.append((name, *args, *sorted(kwargs.items())))
            return self

        return op

    def execute(self):
        self.client.executed.append((self.table, self.ops))
        response = self.client.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return SimpleNamespace(data=response)


class FakeSupabase:
    def __init__(self, responses):
        self.responses = list(responses)
        self.executed = []

    def table(self, name):
        return FakeQuery(self, name)

    def ops(self, index):
        return self.executed[index][1]


def test_get_lead():
    client = FakeSupabase([[{"lead_id": "a", "place_id": "p", "pipeline_status": "scraped", "row_version": 2}], []])
    store = LeadStore(client)

    lead = store.get_lead("a")
    assert lead.pipeline_status == LeadStatus.SCRAPED
    assert lead.row_version == 2
    assert store.get_lead("missing") is None
    assert ("eq", "lead_id", "a") in client.ops(0)


def test_versioned_write_is_conditional():
    client = FakeSupabase([[{"row_version": 3}], [{"lead_id": "a"}]])

    LeadStore(client).set_status("a", LeadStatus.SCRAPING)

    update = client.ops(1)
    assert update[0][0] == "update"
    payload = update[0][1]
    assert payload["pipeline_status"] == "scraping"
    assert payload["row_version"] == 4
    assert payload["updated_at"].endswith("Z")
    assert update[1:] == [("eq", "lead_id", "a"), ("eq", "row_version", 3)]


def test_versioned_write_retries_after_conflict():
    client = FakeSupabase([[{"row_version": 1}], [], [{"row_version": 2}], [{"lead_id": "a"}]])

    assert LeadStore(client)._update_versioned("a", {"pipeline_status": "scored"}) == 3
    assert client.responses == []


def test_versioned_write_gives_up():
    client = FakeSupabase([[{"row_version": 1}], [], [{"row_version": 2}], []])

    with pytest.raises(WriteConflictError) as excinfo:
        LeadStore(client, write_conflict_retries=2).set_status("a", LeadStatus.SCORING)
    assert excinfo.value.attempts == 2
    assert excinfo.value.lead_id == "a"


def test_write_with_loaded_version_skips_the_read():
    client = FakeSupabase([[{"lead_id": "a"}]])

    assert LeadStore(client).set_status("a", LeadStatus.SCORING, expected_version=5) == 6

    update = client.ops(0)
    assert update[0][0] == "update"
    assert update[0][1]["row_version"] == 6
    assert update[1:] == [("eq", "lead_id", "a"), ("eq", "row_version", 5)]


def test_write_after_another_writer_is_a_conflict():
    client = FakeSupabase([[], [{"row_version": 6}]])

    with pytest.raises(WriteConflictError) as excinfo:
        LeadStore(client, write_conflict_retries=3).save_scoring(
            "a", ScoringResult.scoring_failed("provider down"), LeadStatus.SCORING_FAILED, expected_version=5
        )
    assert excinfo.value.attempts == 1
    assert "version 5" in str(excinfo.value)
    assert client.responses == []


def test_write_with_loaded_version_to_deleted_lead():
    with pytest.raises(LeadNotFoundError):
        LeadStore(FakeSupabase([[], []])).set_status("ghost", LeadStatus.SCORING, expected_version=1)


def test_write_to_missing_lead():
    with pytest.raises(LeadNotFoundError):
        LeadStore(FakeSupabase([[]])).set_status("ghost", LeadStatus.SCORING)


def test_backend_failures_become_storage_errors():
    api_error = APIError({"message": "permission denied for table leads", "code": "42501"})
    with pytest.raises(StorageError, match="permission denied"):
        LeadStore(FakeSupabase([api_error])).get_lead("a")

    with pytest.raises(StorageError, match="list_scraped failed"):
        LeadStore(FakeSupabase([httpx.ConnectError("connection refused")])).list_scraped(10)


def test_list_unscraped_filters():
    client = FakeSupabase([[{"lead_id": "a", "place_id": "p1"}]])

    batch = LeadStore(client).list_unscraped(25)

    assert [item.lead_id for item in batch] == ["a"]
    ops = client.ops(0)
    assert ("not_",) in ops
    assert ("is_", "scraped_at", "null") in ops
    assert ("limit", 25) in ops


def test_segment_distribution_pages(monkeypatch):
    monkeypatch.setattr(leads_module, "DISTRIBUTION_PAGE_SIZE", 2)
    client = FakeSupabase(
        [
            [{"review_count": 10, "rating": 4.0}, {"review_count": None, "rating": 5}],
            [{"review_count": 30, "rating": None}],
        ]
    )

    assert LeadStore(client).segment_distribution("Plumber") == ([10, 30], [4.0, 5.0])
    assert ("range", 0, 1) in client.ops(0)
    assert ("range", 2, 3) in client.ops(1)
    assert ("eq", "business_type", "Plumber") in client.ops(1)


def test_record_task_run_upserts():
    client = FakeSupabase([[{"task_id": "t1"}]])

    LeadStore(client).record_task_run("t1", "scrape", "completed", {"count_in": 1})

    table, ops = client.executed[0]
    assert table == "pipeline_tasks"
    name, row, conflict = ops[0]
    assert name == "upsert"
    assert row["status"] == "completed"
    assert conflict == ("on_conflict", "task_id")


class FakeS3:
    def __init__(self, fail=False):
        self.fail = fail
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType):
        if self.fail:
            raise ClientError({"Error": {"Code": "503", "Message": "Slow Down"}}, "PutObject")
        self.objects[(Bucket, Key)] = (Body, ContentType)


def test_artifact_store_keys():
    s3 = FakeS3()
    store = ArtifactStore("leads-bucket", s3)

    assert store.put_page_document("lead-1", "run-1", "# About\nHi") == "scrape-markdown/lead-1/run-1.md"
    assert store.put_run_summary("task-1", {"data": []}) == "jobs/task-1/results.json"
    assert s3.objects[("leads-bucket", "scrape-markdown/lead-1/run-1.md")] == (b"# About\nHi", "text/markdown")


def test_artifact_store_failure():
    with pytest.raises(StorageError, match="S3 upload"):
        ArtifactStore("b", FakeS3(fail=True)).put_run_summary("t", {})
