import asyncio
import json

from fakes import FakeContext, MemorySessionStore

from scraper_orchestrator.sites.merchants.session import FileSessionStore, SessionManager, StoredSession

HOUR = 60 * 60


def test_session_older_than_max_age_is_not_reused(tmp_path):
    store = FileSessionStore(tmp_path)
    now = 1_700_000_000.0
    asyncio.run(store.save(StoredSession("robot@example.com", {"cookies": [], "origins": []}, now - 2 * HOUR), HOUR))
    manager = SessionManager(None, store, max_age_seconds=HOUR, clock=lambda: now)

    assert asyncio.run(manager.load_session_state("robot@example.com")) is None
    assert not store.path_for("robot@example.com").exists()


def test_fresh_session_round_trips_through_file_store(tmp_path):
    store = FileSessionStore(tmp_path)
    now = 1_700_000_000.0
    manager = SessionManager(None, store, max_age_seconds=HOUR, clock=lambda: now)
    context = FakeContext()
    context.cookies.append({"name": "sid", "value": "abc"})

    assert asyncio.run(manager.save_session_state(context, "robot@example.com"))
    payload = json.loads(store.path_for("robot@example.com").read_text())
    assert payload["username"] == "robot@example.com"
    assert payload["max_age"] == HOUR
    assert store.path_for("robot@example.com").name == "merchant-session-robot_example_com.json"

    state = asyncio.run(manager.load_session_state("robot@example.com"))
    assert state["cookies"] == [{"name": "sid", "value": "abc"}]


def test_identity_mismatch_is_rejected():
    store = MemorySessionStore()
    store.sessions["a@example.com"] = StoredSession("someone-else", {"cookies": []}, 0.0)
    manager = SessionManager(store, clock=lambda: 1.0)

    assert asyncio.run(manager.load_session_state("a@example.com")) is None


def test_primary_failure_falls_back_to_file(tmp_path, caplog):
    primary = MemorySessionStore(fail_on=("load", "save"))
    fallback = FileSessionStore(tmp_path)
    manager = SessionManager(primary, fallback, max_age_seconds=HOUR)

    caplog.set_level("WARNING")
    saved = asyncio.run(manager.save_session_state(FakeContext(), "robot@example.com"))
    state = asyncio.run(manager.load_session_state("robot@example.com"))

    assert saved
    assert state is not None
    assert "Session save failed" in caplog.text
    assert "Session load failed" in caplog.text


def test_save_never_raises_when_every_store_fails():
    manager = SessionManager(MemorySessionStore(fail_on=("save",)), MemorySessionStore(fail_on=("save",)))

    assert asyncio.run(manager.save_session_state(FakeContext(), "robot@example.com")) is False


def test_session_info_and_clear(tmp_path):
    store = FileSessionStore(tmp_path)
    now = 1_700_000_000.0
    manager = SessionManager(None, store, max_age_seconds=HOUR, clock=lambda: now)
    asyncio.run(store.save(StoredSession("robot@example.com", {"cookies": []}, now - 30), HOUR))

    info = asyncio.run(manager.session_info("robot@example.com"))
    asyncio.run(manager.clear_session_state("robot@example.com"))

    assert info == {
        "exists": True,
        "identity": "robot@example.com",
        "source": "file",
        "age_seconds": 30.0,
        "expired": False,
    }
    assert asyncio.run(manager.session_info("robot@example.com")) == {
        "exists": False,
        "identity": "robot@example.com",
    }
