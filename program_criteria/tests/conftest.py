import json
from urllib.parse import urlparse

import pytest
import requests
from requests.adapters import BaseAdapter

from program_criteria.core.repositories import InMemoryCriteriaStore


class StubAdapter(BaseAdapter):
    """Answers requests from a {(METHOD, path): (status, body)} table.

    A value may also be an exception instance (raised) or a callable taking
    the prepared request and returning (status, body).
    """

    def __init__(self, routes=None):
        super().__init__()
        self.routes = dict(routes or {})
        self.calls = []

    def send(self, request, **kwargs):
        path = urlparse(request.url).path
        self.calls.append(request)
        answer = self.routes.get((request.method, path), (404, {"message": "not found"}))
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            answer = answer(request)
        status, body = answer
        resp = requests.Response()
        resp.status_code = status
        resp._content = b"" if body is None else json.dumps(body).encode("utf-8")
        resp.headers["Content-Type"] = "application/json"
        resp.encoding = "utf-8"
        resp.url = request.url
        resp.request = request
        return resp

    def close(self):
        pass


@pytest.fixture
def stub():
    return StubAdapter()


@pytest.fixture
def http_session(stub):
    s = requests.Session()
    s.mount("http://", stub)
    return s


@pytest.fixture
def store():
    return InMemoryCriteriaStore()
