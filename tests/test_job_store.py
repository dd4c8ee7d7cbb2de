from job_store import FEED_KEY, new_short_id


def test_create_sets_processing_record_and_short_link(store):
    record = store.create("abc", short_id="x1y2z3", email="a@b.co", name=None)

    assert record["status"] == "processing"
    assert record["name"] == "Friend"
    assert store.get("abc") == record
    assert store.resolve_short_id("x1y2z3") == "abc"


def test_job_and_short_link_expire_after_ttl(store, clock):
    store.create("abc", short_id="x1y2z3")

    clock.advance(86399)
    assert store.get("abc") is not None

    clock.advance(1)
    assert store.get("abc") is None
    assert store.resolve_short_id("x1y2z3") is None


def test_merge_tolerates_missing_record(store):
    merged = store.merge("ghost", {"status": "failed"})

    assert merged == {"id": "ghost", "status": "failed"}
    assert store.get("ghost") == merged


def test_merge_is_stable_for_repeated_updates(store):
    store.create("abc", short_id="s")
    update = {"status": "succeeded", "imageUrl": "https://x/img.png", "updated_at": "t"}

    once = store.merge("abc", update)
    twice = store.merge("abc", update)

    assert once == twice
    assert twice["shortId"] == "s"


def test_feed_is_newest_first_and_bounded(store):
    for i in range(55):
        store.push_feed(f"https://x/{i}.png")

    feed = store.recent()
    assert len(feed) == 50
    assert feed[0]["imageUrl"] == "https://x/54.png"
    assert feed[-1]["imageUrl"] == "https://x/5.png"
    assert "timestamp" in feed[0]


def test_feed_outlives_jobs(store, clock):
    store.create("abc", short_id="s")
    store.push_feed("https://x/a.png")

    clock.advance(86400 * 2)
    assert store.get("abc") is None
    assert len(store.recent()) == 1

    clock.advance(86400 * 5)
    assert store.recent() == []


def test_delete_counts_removed_keys(store):
    store.create("abc", short_id="s")
    store.push_feed("https://x/a.png")

    assert store.delete_job("abc", "s") == 2
    assert store.delete_job("abc", "s") == 0
    assert store.delete_feed() == 1
    assert store.kv.read_list(FEED_KEY) == []


def test_short_id_shape():
    short_id = new_short_id()
    assert len(short_id) == 6
    assert short_id.isalnum() and short_id.lower() == short_id
