"""Load an OpenAPI contract from a file path or an http(s) URL.

YAML and JSON documents are both parsed with PyYAML (JSON is a YAML subset).
Any failure surfaces as ``ContractError`` so startup can refuse to run.
"""

from __future__ import annotations

from typing import Optional

import httpx
import yaml

from specgate.constants import PROXY_TIMEOUT
from specgate.contract.model import Contract
from specgate.errors import ContractError
from specgate.utils.logger import get_logger

logger = get_logger(__name__)


def is_url(location: str) -> bool:
    return location.startswith(("http://", "https://"))


def load_contract(location: str, timeout: float = PROXY_TIMEOUT) -> Contract:
    """Load and index the contract at ``location``.

    Raises:
        ContractError: unreadable, unparseable, or not an OpenAPI document.
    """
    if is_url(location):
        try:
            response = httpx.get(location, timeout=timeout, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ContractError(f"failed to load spec from {location}: {exc}") from exc
        text = response.text
    else:
        try:
            with open(location, encoding="utf-8") as fh:
                text = fh.read()
        except OSError as exc:
            raise ContractError(f"failed to load spec: {exc}") from exc

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ContractError(f"failed to parse spec {location}: {exc}") from exc

    contract = Contract.from_document(document, source=location)
    logger.info(
        "Contract loaded",
        source=location,
        operations=len(contract.operations),
    )
    return contract


def spec_upstream_mismatch(spec_url: str, upstream_url: str) -> Optional[str]:
    """Describe a scheme/host mismatch between a spec URL and the upstream.

    Returns ``None`` when they match (or the spec is not a URL).
    """
    if not is_url(spec_url):
        return None
    try:
        spec = httpx.URL(spec_url)
        upstream = httpx.URL(upstream_url)
    except httpx.InvalidURL as exc:
        return f"invalid URL: {exc}"

    if spec.scheme != upstream.scheme or spec.netloc != upstream.netloc:
        return (
            f"spec URL ({spec.scheme}://{spec.netloc.decode('ascii')}) does not match "
            f"upstream URL ({upstream.scheme}://{upstream.netloc.decode('ascii')})"
        )
    return None
