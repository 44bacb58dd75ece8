import logging

import pgbranch.main
from pgbranch.logging import configure_logging


def test_configure_logging_installs_one_handler():
    configure_logging("debug")
    configure_logging("debug")
    pkg = logging.getLogger("pgbranch")
    assert len(pkg.handlers) == 1
    assert pkg.level == logging.DEBUG
    configure_logging("INFO")


def test_main_serves_configured_app(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)  # keep a stray .env out of it
    monkeypatch.setenv("PGBRANCH_DATABASE_URL", f"sqlite:///{tmp_path / 'serve.db'}")
    monkeypatch.setenv("PGBRANCH_TABLE", "served")
    monkeypatch.setenv("PGBRANCH_PORT", "8123")
    monkeypatch.delenv("PGBRANCH_HOST", raising=False)
    served = {}

    def fake_run(app, host, port):
        served.update(app=app, host=host, port=port)

    monkeypatch.setattr(pgbranch.main.uvicorn, "run", fake_run)
    pgbranch.main.main()

    assert served["port"] == 8123
    assert served["host"] == "0.0.0.0"
    assert served["app"].state.pgbranch.table == "served"
    served["app"].state.pgbranch.engine.dispose()
