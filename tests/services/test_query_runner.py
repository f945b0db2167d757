"""Tests for QueryRunner."""

import logging
import threading

import pytest

from cw.core.errors import QueryFailedError, RemoteRejectedError, ValidationError
from cw.models import QueryStatus
from cw.services import HistoryService, QueryRunner
from cw.services.backoff import BackoffPolicy, Cancelled
from cw.services.query import definition_id
from tests.conftest import client_error, create_test_run, result_row

QUERY = "fields @timestamp, @message | limit 5"
POLL = BackoffPolicy(base=0.001, factor=2, cap=0.002)


@pytest.fixture
def runner(fake_client):
    return QueryRunner(fake_client, poll_policy=POLL)


def test_definition_id_ignores_layout():
    """Test that reformatting a query keeps its definition id."""
    assert definition_id("fields @message\n| limit 5") == definition_id(
        "  fields   @message | limit 5 "
    )
    assert definition_id("fields @message") != definition_id("fields @timestamp")
    assert len(definition_id(QUERY)) == 32


def test_submit_records_scheduled_run(fake_client, runner):
    """Test that a submitted query is recorded as Scheduled."""
    run_id = runner.submit(QUERY, ["app", "db"], 1_000_000, 2_000_500)

    assert run_id == "query-1"
    params = fake_client.started_queries[0]
    assert params["logGroupNames"] == ["app", "db"]
    assert params["queryString"] == QUERY
    assert params["startTime"] == 1000
    assert params["endTime"] == 2001

    run = HistoryService.get_run(run_id)
    assert run.status == "Scheduled"
    assert run.query_id == definition_id(QUERY)
    assert run.contents == QUERY
    assert run.records_total is None


def test_submit_with_explicit_query_id(runner):
    """Test recording a run under a supplied definition id."""
    run_id = runner.submit(QUERY, ["app"], 0, 1000, query_id="errors")

    assert HistoryService.get_run(run_id).query_id == "errors"


@pytest.mark.parametrize(
    "query,groups,start,end",
    [
        ("   ", ["app"], 0, 1000),
        (QUERY, [], 0, 1000),
        (QUERY, ["app"], 1000, 1000),
    ],
)
def test_submit_validation(fake_client, runner, query, groups, start, end):
    """Test that invalid submissions never reach the service."""
    with pytest.raises(ValidationError):
        runner.submit(query, groups, start, end)

    assert fake_client.started_queries == []


def test_submit_rejected_query(fake_client, runner):
    """Test that a malformed query surfaces the service message."""
    fake_client.fail("start_query", client_error("MalformedQueryException", "unexpected symbol"))

    with pytest.raises(RemoteRejectedError) as exc_info:
        runner.submit("fields |", ["app"], 0, 1000)

    assert "unexpected symbol" in str(exc_info.value)
    assert HistoryService.list_runs()[1] == 0


def test_lifecycle_records_each_status(fake_client, runner):
    """Test Scheduled, Running, Complete with the total known only at the end."""
    fake_client.query_statuses = ["Scheduled", "Running", "Complete"]
    fake_client.query_statistics = {
        "recordsMatched": 2.0,
        "recordsScanned": 40.0,
        "bytesScanned": 1024.0,
    }
    fake_client.query_result_pages = [[result_row(**{"@message": "a"}), result_row(**{"@message": "b"})]]
    run_id = runner.submit(QUERY, ["app"], 0, 1000)

    first = runner.poll(run_id)
    assert first.status is QueryStatus.SCHEDULED
    assert HistoryService.get_run(run_id).records_total is None

    second = runner.poll(run_id)
    assert second.status is QueryStatus.RUNNING
    running = HistoryService.get_run(run_id)
    assert running.status == "Running"
    assert running.records_total is None
    assert running.records_scanned == 40.0

    third = runner.poll(run_id)
    assert third.status is QueryStatus.COMPLETE
    assert third.results == [{"@message": "a"}, {"@message": "b"}]
    complete = HistoryService.get_run(run_id)
    assert complete.status == "Complete"
    assert complete.records_total == 2
    assert complete.records_matched == 2.0
    assert complete.bytes_scanned == 1024.0

    runs, total = HistoryService.list_runs()
    assert total == 1


def test_wait_collects_every_result_page(fake_client, runner):
    """Test that paginated results are gathered."""
    fake_client.query_statuses = ["Running", "Complete"]
    fake_client.query_result_pages = [
        [result_row(n="1"), result_row(n="2")],
        [result_row(n="3")],
    ]

    result = runner.run(QUERY, ["app"], 0, 1000)

    assert [row["n"] for row in result.results] == ["1", "2", "3"]
    assert HistoryService.get_run(result.run_id).records_total == 3


def test_poll_of_finished_run_makes_no_call(fake_client, runner):
    """Test that terminal runs are not polled remotely."""
    create_test_run(run_id="done", status="Complete")

    result = runner.poll("done")

    assert result.status is QueryStatus.COMPLETE
    assert fake_client.calls_to("get_query_results") == []


def test_remote_regression_keeps_current_status(fake_client, runner):
    """Test that a stale remote status does not move a run backwards."""
    fake_client.query_statuses = ["Running", "Scheduled", "Complete"]
    run_id = runner.submit(QUERY, ["app"], 0, 1000)

    assert runner.poll(run_id).status is QueryStatus.RUNNING
    assert runner.poll(run_id).status is QueryStatus.RUNNING
    assert runner.poll(run_id).status is QueryStatus.COMPLETE


def test_unknown_remote_status_keeps_waiting(fake_client, runner):
    """Test that an unknown status counts as still pending."""
    fake_client.query_statuses = ["Unknown", "Complete"]
    run_id = runner.submit(QUERY, ["app"], 0, 1000)

    assert runner.poll(run_id).status is QueryStatus.SCHEDULED
    assert runner.wait(run_id).status is QueryStatus.COMPLETE


def test_failed_run_raises(fake_client, runner):
    """Test that a remotely failed run is recorded and reported."""
    fake_client.query_statuses = ["Running", "Failed"]
    run_id = runner.submit(QUERY, ["app"], 0, 1000)

    with pytest.raises(QueryFailedError) as exc_info:
        runner.wait(run_id)

    assert exc_info.value.status is QueryStatus.FAILED
    assert exc_info.value.run_id == run_id
    assert HistoryService.get_run(run_id).status == "Failed"
    assert fake_client.stopped_queries == []


def test_remote_timeout_maps_to_timed_out(fake_client, runner):
    """Test the service's Timeout status."""
    fake_client.query_statuses = ["Timeout"]
    run_id = runner.submit(QUERY, ["app"], 0, 1000)

    with pytest.raises(QueryFailedError):
        runner.wait(run_id)

    assert HistoryService.get_run(run_id).status == "TimedOut"


def test_wait_timeout_cancels_once(fake_client, runner):
    """Test that exceeding the timeout records TimedOut and stops the query once."""
    fake_client.query_statuses = ["Running"]
    run_id = runner.submit(QUERY, ["app"], 0, 1000)

    with pytest.raises(QueryFailedError) as exc_info:
        runner.wait(run_id, timeout=0.02)

    assert exc_info.value.status is QueryStatus.TIMED_OUT
    assert HistoryService.get_run(run_id).status == "TimedOut"
    assert fake_client.stopped_queries == [run_id]


def test_wait_timeout_with_fake_clock(fake_client):
    """Test the deadline against an injected clock."""
    ticks = iter([0.0, 1.0, 2.0, 3.0, 11.0, 12.0])
    runner = QueryRunner(fake_client, poll_policy=POLL, clock=lambda: next(ticks))
    fake_client.query_statuses = ["Running"]
    run_id = runner.submit(QUERY, ["app"], 0, 1000)

    with pytest.raises(QueryFailedError):
        runner.wait(run_id, timeout=10)

    assert len(fake_client.calls_to("get_query_results")) == 4
    assert fake_client.stopped_queries == [run_id]


def test_stop_signal_cancels_run(fake_client):
    """Test that interrupting a wait records Cancelled and stops the query."""
    stop = threading.Event()
    stop.set()
    fake_client.query_statuses = ["Running"]
    runner = QueryRunner(fake_client, poll_policy=POLL)
    run_id = runner.submit(QUERY, ["app"], 0, 1000)
    runner.stop = stop

    with pytest.raises(Cancelled):
        runner.wait(run_id)

    assert HistoryService.get_run(run_id).status == "Cancelled"
    assert fake_client.stopped_queries == [run_id]


def test_keyboard_interrupt_cancels_run(fake_client, runner, mocker):
    """Test that Ctrl-C while waiting cancels the run."""
    fake_client.query_statuses = ["Running"]
    run_id = runner.submit(QUERY, ["app"], 0, 1000)
    mocker.patch("cw.services.query.wait_or_cancel", side_effect=KeyboardInterrupt)

    with pytest.raises(KeyboardInterrupt):
        runner.wait(run_id)

    assert HistoryService.get_run(run_id).status == "Cancelled"
    assert fake_client.stopped_queries == [run_id]


def test_cancel_running_query(fake_client, runner):
    """Test explicit cancellation."""
    run_id = runner.submit(QUERY, ["app"], 0, 1000)

    assert runner.cancel(run_id) is True
    assert HistoryService.get_run(run_id).status == "Cancelled"
    assert fake_client.stopped_queries == [run_id]


def test_cancel_finished_query(fake_client, runner):
    """Test that a finished run is not cancelled."""
    create_test_run(run_id="done", status="Complete")

    assert runner.cancel("done") is False
    assert fake_client.stopped_queries == []


def test_cancel_refused_by_service(fake_client, runner):
    """Test a stop request the service refuses."""
    run_id = runner.submit(QUERY, ["app"], 0, 1000)
    fake_client.fail("stop_query", client_error("InvalidParameterException", "already done"))

    assert runner.cancel(run_id) is False
    assert HistoryService.get_run(run_id).status == "Scheduled"


def test_throttled_poll_is_retried(fake_client, runner):
    """Test that throttling while polling does not fail the run."""
    fake_client.query_statuses = ["Complete"]
    run_id = runner.submit(QUERY, ["app"], 0, 1000)
    fake_client.fail("get_query_results", client_error("ThrottlingException"))

    assert runner.wait(run_id).status is QueryStatus.COMPLETE


def test_run_logs_summary(fake_client, runner, caplog, mocker):
    """Test the summary written after a run."""
    fake_client.query_result_pages = [[result_row(**{"@message": "x", "@ptr": "abc"})]]
    fake_client.query_statistics = {"recordsMatched": 1.0, "recordsScanned": 9.0, "bytesScanned": 99.0}
    mocker.patch.object(logging.getLogger("cw"), "propagate", True)

    with caplog.at_level("INFO", logger="cw"):
        result = runner.run(QUERY, ["app"], 0, 1000)

    assert result.results == [{"@message": "x", "@ptr": "abc"}]
    assert "showing: 1 of 1.0 records matched" in caplog.text
    assert "9.0 records (99.0 bytes) scanned" in caplog.text
