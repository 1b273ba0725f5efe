from concurrent.futures import Executor, Future

import pytest
from requests.structures import CaseInsensitiveDict

from flight_proxy.alert_state import AlertStateMachine
from flight_proxy.app import create_app
from flight_proxy.config import ProxySettings
from flight_proxy.notifier import EmailNotifier

AIRLABS_KEY = "secret-airlabs-key"
FARERA_KEY = "secret-farera-key"


class InlineExecutor(Executor):
    """Runs submitted work immediately so background sends are observable in tests."""
    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start
    def __call__(self):
        return self.now
    def advance(self, minutes=0, seconds=0):
        self.now += minutes * 60 + seconds


class FakeRaw:
    def __init__(self, data):
        self._data = data
    def read(self, amt=None, decode_content=True):
        data, self._data = self._data, b""
        return data


class FakeUpstreamResponse:
    def __init__(self, status_code=200, content=b"", headers=None):
        self.status_code = status_code
        self.raw = FakeRaw(content)
        self.headers = CaseInsensitiveDict(headers or {})
        self.closed = False
    def close(self):
        self.closed = True


@pytest.fixture
def settings():
    return ProxySettings(
        airlabs_api_key=AIRLABS_KEY,
        farera_base_url="https://farera.test",
        farera_api_key=FARERA_KEY,
        alert_recipients=["ops@example.com"],
        feedback_recipients=["team@example.com"],
        resend_api_key="re_test",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def alerts(clock):
    return AlertStateMachine(clock=clock)


@pytest.fixture
def fake_notifier(mocker):
    notifier = mocker.create_autospec(EmailNotifier, instance=True)
    notifier.send.return_value = {"id": "email-1"}
    return notifier


@pytest.fixture
def app(settings, fake_notifier, alerts):
    flask_app = create_app(settings, executor=InlineExecutor(), notifier=fake_notifier, alerts=alerts)
    flask_app.config.update({
        "TESTING": True,
    })
    yield flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def patch_upstream(mocker):
    """
    Patch requests.request so no real upstream is contacted. Tests set
    patch_upstream.return_value to a FakeUpstreamResponse or
    patch_upstream.side_effect to an exception.
    """
    patch = mocker.patch('requests.request')
    patch.return_value = FakeUpstreamResponse(200, b'{"response": []}', {"Content-Type": "application/json"})
    return patch
