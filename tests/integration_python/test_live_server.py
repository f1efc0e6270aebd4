import threading

import pytest
import requests
from werkzeug.serving import make_server


@pytest.fixture
def base_url(make_app):
    # Real socket, threaded server: the same path requests take in production.
    server = make_server("127.0.0.1", 0, make_app(), threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_port}"
    server.shutdown()
    thread.join(5)


def test_liveness(base_url):
    r = requests.get(f"{base_url}/", timeout=10)
    assert r.status_code == 200
    assert r.text == "Cut optimizer server is running"


def test_optimize_smoke(base_url, test_input):
    # Scenario: minimal end-to-end contract; the layout comes back with the keys
    # downstream consumers read.
    r = requests.post(f"{base_url}/optimize", json=test_input, timeout=60)
    assert r.status_code == 200
    data = r.json()
    assert "stockPieces" in data
    assert "fitness" in data


def test_optimize_no_fit_envelope(base_url, non_fitting_input):
    r = requests.post(f"{base_url}/optimize", json=non_fitting_input, timeout=60)
    assert r.status_code == 422
    assert r.json()["error"]["data"]["externalId"] == 1
