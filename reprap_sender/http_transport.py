#!/usr/bin/env python3
# RepRap Sender (RepRap web control engine)
# Copyright (C) 2026 Bob Kolbasowski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
# Optional (not required by the license): If you make improvements, please consider
# contributing them back upstream (e.g., via a pull request) so others can benefit.
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""HTTP transport for the controller's rr_* endpoints."""

from __future__ import annotations

import logging
from typing import Any

import requests

from .utils.constants import HTTP_TIMEOUT_DEFAULT
from .utils.exceptions import TransportUnreachableError
from .utils.logging_config import HTTP_LOGGER_NAME
from .utils.validation import validate_host

logger = logging.getLogger(__name__)
http_logger = logging.getLogger(HTTP_LOGGER_NAME)


class HttpTransport:
    """Blocking JSON-over-HTTP GET transport.

    The query string is passed through verbatim: callers escape G-code payloads
    themselves because the firmware's decoding rules differ from standard form
    encoding.

    Example:
        with HttpTransport("192.168.1.20") as transport:
            status = transport.get("rr_poll")
    """

    def __init__(
        self,
        host: str,
        timeout: float = HTTP_TIMEOUT_DEFAULT,
        session: requests.Session | None = None,
    ):
        self.base_url = validate_host(host)
        self.timeout = float(timeout)
        self._session = session or requests.Session()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def url_for(self, path: str, query: str = "") -> str:
        url = f"{self.base_url}/{path.lstrip('/')}"
        if query:
            url += f"?{query}"
        return url

    def get(self, path: str, query: str = "") -> dict[str, Any]:
        """Fetch and decode one endpoint.

        Raises:
            TransportUnreachableError: On connection errors, timeouts, HTTP
                error codes and bodies that are not a JSON object
        """
        url = self.url_for(path, query)
        http_logger.debug(f">> GET {url}")
        try:
            response = self._session.get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.Timeout as exc:
            http_logger.debug(f"<< timeout {url}")
            raise TransportUnreachableError(f"Timed out after {self.timeout:g}s", url) from exc
        except ValueError as exc:
            http_logger.debug(f"<< invalid JSON from {url}")
            raise TransportUnreachableError(f"Invalid JSON reply: {exc}", url) from exc
        except requests.exceptions.RequestException as exc:
            http_logger.debug(f"<< error {url}: {exc}")
            raise TransportUnreachableError(str(exc), url) from exc
        if not isinstance(data, dict):
            raise TransportUnreachableError(f"Unexpected reply type {type(data).__name__}", url)
        http_logger.debug(f"<< {data}")
        return data

    def close(self) -> None:
        try:
            self._session.close()
        except Exception as exc:
            logger.debug(f"Error closing HTTP session: {exc}")
