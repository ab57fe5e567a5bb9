import json
import urllib.error
import urllib.request
from typing import Any, Optional


class HttpJsonError(RuntimeError):
    def __init__(self, status: int, body: Any, url: str):
        self.status = status
        self.body = body
        self.url = url
        super().__init__(f"HTTP {status} from {url}: {body}")


def _parse(raw: str, status: int, url: str) -> Any:
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except ValueError as e:
        raise HttpJsonError(status, raw, url) from e


def request_json(
    method: str,
    url: str,
    *,
    body: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: int = 30,
) -> Any:
    """
    Sends a JSON request and returns the decoded JSON reply.

    Every failure (HTTP error status, unreachable host, timeout, a reply that
    is not JSON) is raised as HttpJsonError; status is 0 when there was no
    HTTP response.
    """
    data = None
    hdrs = {"Accept": "application/json"}
    if body is not None:
        data = json.dumps(body, default=str).encode("utf-8")
        hdrs["Content-Type"] = "application/json"
    hdrs.update(headers or {})
    req = urllib.request.Request(url, data=data, headers=hdrs, method=method)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8", errors="replace")
            status = getattr(resp, "status", 200)
    except urllib.error.HTTPError as e:
        text = e.read().decode("utf-8", errors="replace") if hasattr(e, "read") else str(e)
        try:
            parsed: Any = json.loads(text)
        except ValueError:
            parsed = text
        raise HttpJsonError(getattr(e, "code", 0) or 0, parsed, url) from e
    except urllib.error.URLError as e:
        raise HttpJsonError(0, str(getattr(e, "reason", e)), url) from e
    except (TimeoutError, OSError) as e:
        # Read timeouts and dropped connections after the request was sent.
        raise HttpJsonError(0, str(e) or type(e).__name__, url) from e
    return _parse(raw, status, url)
