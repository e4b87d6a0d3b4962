"""Unit tests for the requests-based transport."""

from unittest.mock import MagicMock

import pytest
import requests

from reprap_sender.http_transport import HttpTransport
from reprap_sender.utils.exceptions import InvalidParameterError, TransportUnreachableError


@pytest.fixture
def http_session():
    session = MagicMock(spec=requests.Session)
    response = MagicMock()
    response.json.return_value = {"buff": 700}
    session.get.return_value = response
    return session


@pytest.fixture
def transport(http_session):
    return HttpTransport("192.168.1.20", timeout=2.0, session=http_session)


class TestHttpTransport:
    def test_base_url_gets_scheme(self, transport):
        assert transport.base_url == "http://192.168.1.20"

    def test_query_passed_verbatim(self, transport, http_session):
        data = transport.get("rr_gcode", "gcode=G1+X%2D10")
        assert data == {"buff": 700}
        http_session.get.assert_called_once_with(
            "http://192.168.1.20/rr_gcode?gcode=G1+X%2D10", timeout=2.0
        )

    def test_no_query_no_question_mark(self, transport):
        assert transport.url_for("rr_poll") == "http://192.168.1.20/rr_poll"

    def test_timeout_is_unreachable(self, transport, http_session):
        http_session.get.side_effect = requests.exceptions.Timeout("slow")
        with pytest.raises(TransportUnreachableError) as exc_info:
            transport.get("rr_poll")
        assert exc_info.value.url == "http://192.168.1.20/rr_poll"

    def test_connection_error_is_unreachable(self, transport, http_session):
        http_session.get.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(TransportUnreachableError):
            transport.get("rr_poll")

    def test_http_error_is_unreachable(self, transport, http_session):
        http_session.get.return_value.raise_for_status.side_effect = requests.exceptions.HTTPError("500")
        with pytest.raises(TransportUnreachableError):
            transport.get("rr_poll")

    def test_non_json_is_unreachable(self, transport, http_session):
        http_session.get.return_value.json.side_effect = ValueError("not json")
        with pytest.raises(TransportUnreachableError):
            transport.get("rr_poll")

    def test_non_object_json_is_unreachable(self, transport, http_session):
        http_session.get.return_value.json.return_value = [1, 2]
        with pytest.raises(TransportUnreachableError):
            transport.get("rr_files")

    def test_context_manager_closes_session(self, http_session):
        with HttpTransport("printer.local", session=http_session):
            pass
        http_session.close.assert_called_once()

    def test_empty_host_rejected(self):
        with pytest.raises(InvalidParameterError):
            HttpTransport("")
