import logging

import demo


def test_demo_runs_with_log_format(monkeypatch, capsys):
    monkeypatch.setenv("DB_BACKEND", "memory")
    monkeypatch.setenv("LOG_LEVEL", "info")
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kw: calls.append(kw))

    demo.main()

    assert calls == [{"level": "INFO", "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"}]
    out = capsys.readouterr().out
    assert "Allocate Yara -> A1: CapacityExceeded" in out
    assert "Room Usage:" in out
