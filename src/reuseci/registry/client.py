# registry/client.py
from __future__ import annotations

import json
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, List, Optional
from urllib.parse import urljoin

from ..errors import NotFoundError, PipelineError, VersionImmutabilityError
from ..model import Item, Reference
from ..serialize import item_from_dict, item_to_dict
from ..store import Published


class RegistryError(PipelineError):
    """Raised when registry requests fail."""
    pass


class RegistryClient:
    """HTTP client for a ReuseCI registry. Usable anywhere a DefinitionStore is."""

    def __init__(self, base_url: str, *, timeout: float = 30.0):
        """
        Initialize the client.

        Args:
            base_url: Base URL of the registry (e.g., "http://localhost:8000")
            timeout: Socket timeout for each request, in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _request(self, method: str, path: str, data: Optional[dict] = None) -> dict:
        """
        Make an HTTP request to the registry.

        Returns:
            Parsed JSON response as dictionary

        Raises:
            NotFoundError: on 404 for a missing item
            VersionImmutabilityError: on 409
            RegistryError: for any other failed request
        """
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        req_data = json.dumps(data).encode("utf-8") if data is not None else None
        req = urllib.request.Request(
            url, data=req_data, headers={"Content-Type": "application/json"}, method=method
        )

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
                return json.loads(body) if body else {}
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8") if e.fp else ""
            raise _error_from_response(e.code, e.reason, body) from None
        except urllib.error.URLError as e:
            raise RegistryError(f"network error talking to {self.base_url}: {e.reason}") from None
        except json.JSONDecodeError as e:
            raise RegistryError(f"invalid JSON response: {e}") from None

    # ---- DefinitionStore protocol ----

    def publish(self, item: Item) -> str:
        return self.publish_document(item_to_dict(item))["digest"]

    def fetch(self, reference: Reference) -> Published:
        data = self._request("GET", f"/items/{_quote(str(reference))}")
        item = item_from_dict(data.get("document"), source=self.base_url)
        return Published(item=item, digest=str(data.get("digest", "")))

    def versions(self, location: str) -> List[str]:
        return list(self._request("GET", f"/versions/{_quote(location)}").get("versions", []))

    def __contains__(self, reference: object) -> bool:
        if not isinstance(reference, Reference):
            return False
        try:
            self.fetch(reference)
        except NotFoundError:
            return False
        return True

    # ---- registry-only calls ----

    def publish_document(self, document: dict) -> dict:
        """POST /publish; returns {reference, digest, created}."""
        return self._request("POST", "/publish", data={"document": document})

    def create_run(
        self,
        reference: str,
        inputs: Optional[dict] = None,
        secrets: Optional[dict] = None,
        *,
        halt_on_failure: bool = False,
    ) -> dict:
        return self._request(
            "POST",
            "/runs",
            data={
                "reference": str(reference),
                "inputs": inputs or {},
                "secrets": secrets or {},
                "halt_on_failure": halt_on_failure,
            },
        )

    def get_run(self, run_id: str) -> dict:
        return self._request("GET", f"/runs/{_quote(run_id)}")


def _quote(text: str) -> str:
    return urllib.parse.quote(text, safe="/@")


def _error_from_response(code: int, reason: Any, body: str) -> PipelineError:
    try:
        err = (json.loads(body) or {}).get("error") or {}
    except (json.JSONDecodeError, AttributeError):
        err = {}

    details = dict(err.get("details") or {})
    reference = err.get("reference")
    if code == 404 and err.get("kind") == "NotFoundError":
        return NotFoundError(reference or "")
    if code == 409 and err.get("kind") == "VersionImmutabilityError":
        return VersionImmutabilityError(
            reference or "", details.get("expected_digest", ""), details.get("actual_digest", "")
        )
    if err:
        details.pop("remote_kind", None)
        return RegistryError(
            err.get("message", f"{code} {reason}"),
            reference=reference,
            job=err.get("job"),
            step=err.get("step"),
            remote_kind=err.get("kind"),
            **details,
        )
    return RegistryError(f"registry request failed: {code} {reason}. {body}".strip())
