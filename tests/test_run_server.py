import os

import run_server


def test_main_serves_from_the_current_directory(tmp_path, monkeypatch):
    calls = []
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(run_server.uvicorn, "run", lambda app, **kwargs: calls.append(kwargs))

    run_server.main()

    assert os.getcwd() == str(tmp_path)
    assert calls and calls[0]["host"] == run_server.DEFAULT_HOST
