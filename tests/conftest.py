import copy

import pytest

from cut_optimizer_server import create_app

TEST_INPUT = {
    "method": "guillotine",
    "randomSeed": 1,
    "cutWidth": 2,
    "stockPieces": [
        {"width": 48, "length": 96, "patternDirection": "none", "price": 0},
        {"width": 48, "length": 120, "patternDirection": "none", "price": 0},
    ],
    "cutPieces": [
        {"externalId": 1, "width": 10, "length": 30, "patternDirection": "none", "canRotate": True},
        {"externalId": 2, "width": 45, "length": 100, "patternDirection": "none", "canRotate": True},
    ],
}

NON_FITTING_INPUT = {
    "method": "guillotine",
    "randomSeed": 1,
    "cutWidth": 2,
    "stockPieces": [
        {"width": 48, "length": 96, "patternDirection": "none", "price": 0},
    ],
    "cutPieces": [
        {"externalId": 1, "width": 10, "length": 300, "patternDirection": "none", "canRotate": True},
    ],
}


@pytest.fixture
def test_input():
    return copy.deepcopy(TEST_INPUT)


@pytest.fixture
def non_fitting_input():
    return copy.deepcopy(NON_FITTING_INPUT)


@pytest.fixture
def make_app():
    # Thread pool keeps fake engines (closures) usable and avoids forking per test.
    apps = []

    def factory(**overrides):
        config = {"TESTING": True, "WORKER_POOL": "thread", "WORKERS": 2}
        config.update(overrides)
        app = create_app(config)
        apps.append(app)
        return app

    yield factory

    for app in apps:
        app.extensions["job_dispatcher"].shutdown(wait=False)


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()
