import httpx
import pytest

from client import TransformClient, TransformError, TransformTimeout, build_parser


def _scripted(statuses):
    """Serve /status responses in order; the last one repeats."""
    calls = {"n": 0}

    def handler(request):
        if request.url.path == "/transform":
            return httpx.Response(200, json={"success": True, "predictionId": "abc",
                                             "status": "processing", "statusUrl": "/status/abc"})
        i = min(calls["n"], len(statuses) - 1)
        calls["n"] += 1
        return httpx.Response(200, json=statuses[i])

    return handler, calls


def _client(handler, sleeps):
    http = httpx.Client(base_url="http://relay.test", transport=httpx.MockTransport(handler))
    return TransformClient(http=http, sleep=sleeps.append)


def test_poll_until_succeeded():
    handler, calls = _scripted([
        {"id": "abc", "status": "processing"},
        {"id": "abc", "status": "processing"},
        {"id": "abc", "status": "succeeded", "imageUrl": "https://x/img.png"},
    ])
    sleeps, progress = [], []

    result = _client(handler, sleeps).poll_for_completion("abc", on_progress=progress.append, interval=2.0)

    assert result["imageUrl"] == "https://x/img.png"
    assert calls["n"] == 3
    assert sleeps == [2.0, 2.0]
    assert [p["status"] for p in progress] == ["processing", "processing", "succeeded"]


def test_poll_raises_on_failure():
    handler, _ = _scripted([{"id": "abc", "status": "failed", "error": "No human face detected"}])

    with pytest.raises(TransformError, match="No human face"):
        _client(handler, []).poll_for_completion("abc")


def test_poll_gives_up_after_max_attempts():
    handler, calls = _scripted([{"id": "abc", "status": "processing"}])

    with pytest.raises(TransformTimeout):
        _client(handler, []).poll_for_completion("abc", max_attempts=5)
    assert calls["n"] == 5


def test_status_error_uses_server_message():
    def handler(request):
        return httpx.Response(404, json={"error": "Prediction not found"})

    with pytest.raises(TransformError, match="Prediction not found"):
        _client(handler, []).check_status("gone")


def test_transform_image_submits_then_polls():
    handler, _ = _scripted([{"id": "abc", "status": "succeeded", "imageUrl": "https://x/img.png"}])

    result = _client(handler, []).transform_image(b"img", "me.png", name="Example")

    assert result == {"imageUrl": "https://x/img.png", "predictionId": "abc"}


def test_cleanup_sends_admin_key():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"success": True, "stats": {}})

    http = httpx.Client(base_url="http://relay.test", transport=httpx.MockTransport(handler))
    TransformClient(http=http, admin_key="s3cret").cleanup()

    assert seen[0].headers["x-admin-key"] == "s3cret"


def test_client_against_app(client):
    """Full lifecycle through the real routes."""
    tc = TransformClient(http=client, sleep=lambda s: None)
    submitted = tc.submit(b"img", "me.jpg", email="fan@example.com")

    client.post("/webhook", json={"id": submitted["predictionId"], "status": "succeeded",
                                  "output": "https://x/img.png"})

    assert tc.poll_for_completion(submitted["predictionId"])["imageUrl"] == "https://x/img.png"


def test_cli_parser():
    args = build_parser().parse_args(["cleanup", "--yes"])
    assert args.command == "cleanup" and args.yes

    args = build_parser().parse_args(["transform", "a.jpg", "b.jpg"])
    assert args.images == ["a.jpg", "b.jpg"]
    assert args.name == "Example"
