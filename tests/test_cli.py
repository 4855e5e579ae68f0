import json

from prov_engine.cli import crawl_cli
from prov_engine.fhir.errors import normalize_error


class StubCrawler:
    def __init__(self, result=None, error=None):
        self.result = result or []
        self.error = error

    def discover(self, ref):
        if self.error:
            raise self.error
        return self.result


RECORDS = [
    {"resource": {"id": "p1", "target": [{"reference": "Observation/1"}]}},
    {"resource": {"id": "p2", "target": [{"reference": "Observation/1"}]}},
]


def test_prints_json(monkeypatch, capsys):
    monkeypatch.setenv("FHIR_SERVER_URL", "http://fhir.test")
    monkeypatch.setattr(crawl_cli, "build_crawler", lambda settings: StubCrawler(RECORDS))

    assert crawl_cli.main(["Observation/1"]) == 0
    assert json.loads(capsys.readouterr().out) == RECORDS


def test_ids_only(monkeypatch, capsys):
    monkeypatch.setenv("FHIR_SERVER_URL", "http://fhir.test")
    monkeypatch.setattr(crawl_cli, "build_crawler", lambda settings: StubCrawler(RECORDS))

    assert crawl_cli.main(["Observation/1", "--ids-only"]) == 0
    assert capsys.readouterr().out.split() == ["p1", "p2"]


def test_errors_exit_non_zero(monkeypatch, capsys):
    monkeypatch.setenv("FHIR_SERVER_URL", "http://fhir.test")
    monkeypatch.setattr(
        crawl_cli, "build_crawler", lambda settings: StubCrawler(error=normalize_error(404, None))
    )

    assert crawl_cli.main(["Observation/1"]) == 1
    assert "Not found" in capsys.readouterr().err


def test_missing_configuration(monkeypatch, capsys):
    monkeypatch.delenv("FHIR_SERVER_URL", raising=False)
    assert crawl_cli.main(["Observation/1"]) == 1
    assert "FHIR_SERVER_URL" in capsys.readouterr().err


def test_serve_runs_uvicorn(monkeypatch):
    from prov_engine.cli import serve_cli

    calls = []
    monkeypatch.setattr(serve_cli.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    assert serve_cli.main(["--host", "127.0.0.1", "--port", "8080"]) == 0

    ((app, kwargs),) = calls
    assert app == "prov_engine.service.api:app"
    assert kwargs == {"host": "127.0.0.1", "port": 8080, "workers": 1, "log_level": "debug"}
