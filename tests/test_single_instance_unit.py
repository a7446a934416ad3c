import pytest

from lnscheduler.utils.single_instance import AlreadyRunningError, acquire_lock, release_lock


def test_second_lock_is_refused_and_keeps_owner_pid(tmp_path):
    path = tmp_path / "sched.lock"
    held = acquire_lock(path)
    try:
        owner = path.read_text()
        assert owner.isdigit()
        with pytest.raises(AlreadyRunningError):
            acquire_lock(path)
        assert path.read_text() == owner
    finally:
        release_lock(held)


def test_lock_can_be_retaken_after_release(tmp_path):
    path = tmp_path / "sched.lock"
    release_lock(acquire_lock(path))
    handle = acquire_lock(path)
    release_lock(handle)
    release_lock(None)


@pytest.fixture
def api_server_module(tmp_path, monkeypatch):
    # api_server opens api_server.log in the working directory on import.
    monkeypatch.chdir(tmp_path)
    import api_server

    monkeypatch.setattr(api_server, "_load_local_env", lambda: None)
    runs = []
    monkeypatch.setattr(api_server.uvicorn, "run", lambda app, **kw: runs.append((app, kw)))
    monkeypatch.setattr(api_server, "runs", runs, raising=False)
    return api_server


def test_api_without_scheduler_runs_beside_a_locked_scheduler(tmp_path, monkeypatch, api_server_module):
    path = tmp_path / "sched.lock"
    monkeypatch.setenv("LNSCHED_LOCK_PATH", str(path))
    monkeypatch.setenv("LNSCHED_DISABLE_SCHEDULER", "1")
    held = acquire_lock(path)
    try:
        api_server_module.main()
    finally:
        release_lock(held)

    app, kw = api_server_module.runs[0]
    assert app == "lnscheduler.api.app:app"
    assert kw["workers"] == 1


def test_api_with_scheduler_refuses_to_start_beside_a_locked_scheduler(tmp_path, monkeypatch, api_server_module):
    path = tmp_path / "sched.lock"
    monkeypatch.setenv("LNSCHED_LOCK_PATH", str(path))
    monkeypatch.delenv("LNSCHED_DISABLE_SCHEDULER", raising=False)
    held = acquire_lock(path)
    try:
        with pytest.raises(SystemExit) as exc:
            api_server_module.main()
    finally:
        release_lock(held)

    assert exc.value.code == 1
    assert api_server_module.runs == []
