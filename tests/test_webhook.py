import pytest

from webhook import (
    NO_FACE,
    PROCESSING,
    SAFETY,
    build_update,
    classify_error,
    extract_output_url,
    terminal_status,
)


@pytest.mark.parametrize("raw, kind", [
    ("RuntimeError: align face fail", NO_FACE),
    ("facexlib could not find landmarks", NO_FACE),
    ("NSFW content detected", SAFETY),
    ("output flagged by safety checker", SAFETY),
    ("CUDA out of memory", PROCESSING),
])
def test_classify_error(raw, kind):
    got, fields = classify_error(raw)
    assert got == kind
    assert fields["errorType"] == kind
    assert fields["error"]


def test_processing_error_keeps_raw_details():
    _, fields = classify_error("CUDA out of memory")
    assert fields["errorDetails"] == "CUDA out of memory"

    _, fields = classify_error("NSFW content detected")
    assert "errorDetails" not in fields


def test_missing_error_text_is_processing_error():
    kind, fields = classify_error(None)
    assert kind == PROCESSING
    assert fields["errorDetails"] == "Unknown error"


@pytest.mark.parametrize("output", [
    "https://x/img.png",
    ["https://x/img.png", "https://x/other.png"],
    {"url": "https://x/img.png"},
    [{"url": "https://x/img.png"}],
])
def test_extract_output_url_shapes(output):
    assert extract_output_url(output) == "https://x/img.png"


@pytest.mark.parametrize("output", [None, [], {}, "", 42])
def test_extract_output_url_empty(output):
    assert extract_output_url(output) is None


def test_build_update_success():
    update = build_update({
        "id": "abc",
        "status": "succeeded",
        "output": ["https://x/img.png"],
        "metrics": {"predict_time": 12.5},
        "completed_at": "2026-01-01T00:00:00Z",
    })

    assert update == {
        "status": "succeeded",
        "updated_at": "2026-01-01T00:00:00Z",
        "imageUrl": "https://x/img.png",
        "processingTime": 12.5,
    }


def test_build_update_failure():
    update = build_update({"id": "abc", "status": "failed", "error": "align face fail"})

    assert update["status"] == "failed"
    assert update["errorType"] == NO_FACE
    assert "imageUrl" not in update


@pytest.mark.parametrize("raw, expected", [
    ("succeeded", "succeeded"),
    ("failed", "failed"),
    ("canceled", "failed"),
    ("aborted", "failed"),
    ("starting", None),
    ("processing", None),
    (None, None),
    ("", None),
])
def test_terminal_status(raw, expected):
    assert terminal_status(raw) == expected


def test_build_update_canceled_is_processing_failure():
    update = build_update({"id": "abc", "status": "canceled"})

    assert update["status"] == "failed"
    assert update["errorType"] == PROCESSING
    assert update["errorDetails"] == "Prediction canceled"


def test_build_update_rejects_in_flight_status():
    with pytest.raises(ValueError):
        build_update({"id": "abc", "status": "processing"})
