import base64
import json
from http.client import HTTPMessage

import pytest

from trigger_jenkins import trigger_jenkins
from trigger_jenkins import Config
from trigger_jenkins import HTTPError
from trigger_jenkins import Session


g_host = 'http://jenkins.example.com'
g_job = 'thing'
g_auth = ('username', 'token')
g_auth_b64 = 'Basic ' + base64.b64encode(b'username:token').decode('ascii')
g_crumb = {'crumb': 'abc', 'crumbRequestField': 'Jenkins-Crumb'}
g_environ = {
    'JENKINS_HOST_URL': g_host,
    'JENKINS_USERNAME': g_auth[0],
    'JENKINS_API_TOKEN': g_auth[1],
}


def make_config(**kwargs):
    values = dict(
        host=g_host,
        username=g_auth[0],
        token=g_auth[1],
        job=g_job,
        params={},
        interval=2.0,
        timeout=None,
        wait_queue=False,
        verify_ssl=True,
    )
    values.update(kwargs)
    return Config(**values)


class FakeResponse:
    """
    Mock response class that works more or less like an HTTP Response object.
    """

    def __init__(self, text='', headers=None, status_code=200):
        if not isinstance(text, bytes):
            text = text.encode('utf-8')
        self._readable = text
        self.headers = HTTPMessage()
        for key, value in (headers or {}).items():
            self.headers[key] = str(value)
        self.status = status_code

    def read(self, size=-1):
        if size < 0:
            size = len(self._readable)
        text = self._readable[:size]
        self._readable = self._readable[size:]
        return text

    def close(self):
        self._readable = b''


class FakeServer:
    """
    Stand-in for the urllib opener. Serves canned responses per (url, method)
    and records every request it receives.

    When several responses are registered for the same url they are served in
    order, and the last one keeps being served after that. A response
    registered for a url without query string also answers that url with any
    query string.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, url, text='', headers=None, status_code=200, method='GET'):
        if isinstance(text, (dict, list)):
            text = json.dumps(text)
        resp = dict(text=text, headers=headers or {}, status_code=status_code)
        self.routes.setdefault((url, method.upper()), []).append(resp)

    def open(self, request, *args, **kwargs):
        self.requests.append(request)
        url = request.get_full_url()
        method = request.get_method()
        responses = self.routes.get((url, method), None)
        if not responses:
            # fall back to a response registered without the query string
            responses = self.routes.get((url.split('?')[0], method), None)
        if not responses:
            raise RuntimeError(
                "No mock response set for {} '{}'".format(method, url)
            )
        resp = responses.pop(0) if len(responses) > 1 else responses[0]

        status = resp['status_code']
        if status >= 400 or (method != 'GET' and 300 <= status < 400):
            fake = FakeResponse(**resp)
            raise HTTPError(url, status, 'Mock error', fake.headers, fake)
        return FakeResponse(**resp)

    def urls(self, method=None):
        return [
            r.get_full_url()
            for r in self.requests
            if method is None or r.get_method() == method
        ]


@pytest.fixture(autouse=True)
def config():
    """
    Restore the original CONFIG in the trigger_jenkins module.
    """
    backup = trigger_jenkins.CONFIG.copy()
    try:
        yield
    finally:
        trigger_jenkins.CONFIG.clear()
        trigger_jenkins.CONFIG.update(backup)


@pytest.fixture
def server(monkeypatch):
    server = FakeServer()
    monkeypatch.setattr(
        trigger_jenkins, 'build_opener', lambda *handlers: server
    )
    return server


@pytest.fixture
def session(server):
    """
    A session against the fake server, with its crumb already fetched.
    """
    server.add(g_host + '/crumbIssuer/api/json', g_crumb)
    session = Session(make_config())
    session.get_crumb()
    return session


@pytest.fixture
def sleeps(monkeypatch):
    """
    Replace time.sleep and return the list of requested sleep durations.
    """
    calls = []
    monkeypatch.setattr(trigger_jenkins.time, 'sleep', calls.append)
    return calls
