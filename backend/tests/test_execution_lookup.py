"""Tests for finding the video execution by generation id and classifying it."""

import pytest

from carousel.errors import ReconciliationAmbiguous, TerminalEngineError
from carousel.services.execution_lookup import (
    ExecutionListScanner,
    classify_execution,
    correlation_id_of,
)
from conftest import make_execution

WEBHOOK_NODE = "Video Generation Webhook"


def _scanner(limit=10):
    return ExecutionListScanner(workflow_id="wf", webhook_node=WEBHOOK_NODE, limit=limit)


def test_correlation_id_read_from_body_or_top_level():
    assert correlation_id_of(make_execution("gen_a"), WEBHOOK_NODE) == "gen_a"
    assert correlation_id_of(make_execution("gen_b", nested_body=False), WEBHOOK_NODE) == "gen_b"
    assert correlation_id_of({"data": {}}, WEBHOOK_NODE) is None


def test_match_ignores_position_in_listing(fake_engine):
    fake_engine.executions = [make_execution(f"gen_other_{n}") for n in range(6)] + [
        make_execution("gen_target", "success", video_url="https://engine.test/v.mp4")
    ]

    execution = _scanner().find_execution_by_correlation_id("gen_target")

    assert execution["id"] == "exec-gen_target"


def test_execution_outside_scan_window_is_ambiguous(fake_engine):
    fake_engine.executions = [make_execution(f"gen_other_{n}") for n in range(10)] + [make_execution("gen_target")]

    with pytest.raises(ReconciliationAmbiguous):
        _scanner(limit=10).find_execution_by_correlation_id("gen_target")


def test_success_reads_video_from_result_node():
    result = classify_execution(make_execution("gen_a", "success", video_url="https://engine.test/v.mp4"))
    assert result.state == "success"
    assert result.video_url == "https://engine.test/v.mp4"


def test_merged_video_or_first_clip_used_as_fallback():
    execution = make_execution("gen_a", "success")
    execution["data"]["resultData"]["runData"]["Format Final Result"] = [
        {
            "data": {
                "main": [
                    [
                        {
                            "json": {
                                "results": {
                                    "videoClips": [
                                        {"slideNumber": 1, "success": False},
                                        {"slideNumber": 2, "success": True, "videoUrl": "https://engine.test/c2.mp4"},
                                    ]
                                }
                            }
                        }
                    ]
                ]
            }
        }
    ]

    result = classify_execution(execution)

    assert result.video_url == "https://engine.test/c2.mp4"
    assert [clip.slide_number for clip in result.video_clips] == [2]


def test_finished_without_video_is_terminal():
    with pytest.raises(TerminalEngineError):
        classify_execution(make_execution("gen_a", "success"))


@pytest.mark.parametrize("status", ["error", "crashed", "canceled"])
def test_failed_executions_are_terminal(status):
    with pytest.raises(TerminalEngineError):
        classify_execution(make_execution("gen_a", status))


@pytest.mark.parametrize("status,expected", [("running", "running"), ("waiting", "running"), ("new", "pending")])
def test_in_flight_executions(status, expected):
    assert classify_execution(make_execution("gen_a", status)).state == expected
