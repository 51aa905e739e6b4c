import uuid

from pricemonitor.jobs.collector import BatchCollector
from pricemonitor.jobs.dispatcher import Dispatcher
from pricemonitor.jobs.funnel import Funnel
from pricemonitor.jobs import status_server
from pricemonitor.models import Sample


class DummyStore:
    def upsert_station(self, address, geo_location, brand):
        return uuid.uuid4()

    def create_samples(self, rows):
        pass


def make_app():
    funnel = Funnel()
    collector = BatchCollector(DummyStore(), funnel, expected_samples=1, capacity=10, deadline=30)
    dispatcher = Dispatcher([], emit=funnel.emit, interval=60, pool_size=1)
    return status_server.create_app(collector, dispatcher), collector, dispatcher


def test_root():
    app, _, _ = make_app()
    response = app.test_client().get("/")
    assert response.status_code == 200


def test_health_endpoint_reports_progress():
    app, collector, dispatcher = make_app()
    dispatcher.run_tick()
    collector.handle(Sample(address="a", geo_location="1,2", brand="shell", prices={"Diesel": 1.6}))

    response = app.test_client().get("/healthz")

    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "ok"
    assert body["stations"] == 0
    assert body["ticks"] == 1
    assert body["flushes"] == 1
    assert body["rows_written"] == 1
    assert body["last_flush"]["reason"] == "count"


def test_health_endpoint_before_first_flush():
    app, _, _ = make_app()
    body = app.test_client().get("/healthz").get_json()
    assert body["last_flush"] is None
    assert body["rows_dropped"] == 0


def test_start_status_server_runs_in_daemon_thread(monkeypatch):
    app, _, _ = make_app()
    started = {}

    def fake_run(host, port, use_reloader):
        started.update(host=host, port=port, use_reloader=use_reloader)

    monkeypatch.setattr(app, "run", fake_run)
    thread = status_server.start_status_server(app, 9100)
    thread.join(timeout=2)

    assert thread.daemon is True
    assert started == {"host": "0.0.0.0", "port": 9100, "use_reloader": False}
