from app.store import ComplaintStore


def test_update_merges_fields(store):
    store.update("c-1", {"a": 1})
    store.update("c-1", {"b": 2})

    record = store.get("c-1")
    assert record["a"] == 1
    assert record["b"] == 2
    assert record["complaint_id"] == "c-1"


def test_get_returns_copy(store):
    store.update("c-1", {"items": [1]})
    store.get("c-1")["items"].append(2)
    assert store.get("c-1")["items"] == [1]


def test_get_missing(store):
    assert store.get("nope") is None


def test_increment(store):
    assert store.increment("c-1", "retry_count") == 1
    assert store.increment("c-1", "retry_count") == 2
    assert store.get("c-1")["retry_count"] == 2


def test_append(store):
    store.append("c-1", "fallbacks", {"n": 1})
    store.append("c-1", "fallbacks", {"n": 2})
    assert store.get("c-1")["fallbacks"] == [{"n": 1}, {"n": 2}]


def test_context_round_trip(store, make_context):
    context = make_context(answers=["Monday", ""])
    store.save_context(context)

    loaded = store.load_context("c-1")
    record = store.get("c-1")

    assert loaded.conversation_history[0].answer == "Monday"
    assert loaded.pending_turn.id == context.conversation_history[1].id
    assert loaded.find_turn(context.conversation_history[1].id) == 1
    assert record["questions_asked"] == 2
    assert record["questions_answered"] == 1


def test_file_backed_store_survives_restart(tmp_path, make_context):
    first = ComplaintStore(tmp_path)
    first.save_context(make_context())
    first.increment("c-1", "retry_count")

    second = ComplaintStore(tmp_path)

    assert second.load_context("c-1").original_complaint.startswith("I was charged twice")
    assert second.get("c-1")["retry_count"] == 1
    assert (tmp_path / "c-1.json").exists()


def test_in_memory_store_writes_no_files(tmp_path, monkeypatch, make_context):
    monkeypatch.chdir(tmp_path)
    store = ComplaintStore()

    store.save_context(make_context())
    store.update("c-1", {"retry_count": 1})

    assert store.get("c-1")["retry_count"] == 1
    assert store.get("c-2") is None
    assert list(tmp_path.iterdir()) == []
