"""Single-hop proxy: replay a request on one peer and relay its response."""

import logging

import requests
import urllib3

from healthnode.errors import UpstreamError
from healthnode.protocol import Response, strip_query_param

logger = logging.getLogger(__name__)

MONITOR_PARAM = "monitor"

# Re-framed by connection close on our side.
HOP_BY_HOP = ("connection", "keep-alive", "proxy-connection", "transfer-encoding")


def forward_url(monitor: str, target: str) -> str:
    """URL on *monitor* for *target* with the monitor parameter stripped."""
    return monitor.rstrip("/") + strip_query_param(target, MONITOR_PARAM)


class Forwarder:
    def __init__(self, timeout: float = 15.0, session: requests.Session | None = None):
        self._timeout = timeout
        self._session = session or requests.Session()

    def forward(self, monitor: str, target: str) -> Response:
        """Issue the same GET on *monitor*; status, headers and body come back as-is.

        No retries. Any transport failure raises UpstreamError (502).
        """
        url = forward_url(monitor, target)
        logger.info("Proxying %s -> %s", target, url)
        try:
            resp = self._session.get(
                url,
                timeout=self._timeout,
                stream=True,
                allow_redirects=False,
                headers={"Connection": "close"},
            )
            try:
                body = resp.raw.read(decode_content=False)
            finally:
                resp.close()
        except (requests.RequestException, urllib3.exceptions.HTTPError, OSError) as e:
            logger.warning("Proxy request to %s failed: %s", url, e)
            raise UpstreamError("monitor request failed") from e

        headers = [(name, value) for name, value in resp.raw.headers.items()
                   if name.lower() not in HOP_BY_HOP]
        headers.append(("Connection", "close"))
        return Response(status=resp.status_code, headers=headers, body=body,
                        reason=resp.reason)
