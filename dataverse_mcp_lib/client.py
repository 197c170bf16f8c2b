"""
Dataverse Web API client handling transport, error parsing and solution context.
"""

import asyncio
import json
import sys
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlencode
import requests

from .constants import (
    BOUND_OPERATION_NAMESPACE,
    ODATA_HEADERS,
    SOLUTION_PUBLISHER_EXPAND,
    SOLUTION_SELECT,
    USER_AGENT,
)
from .models import DataverseConfig, SolutionContext


def encode_query_params(params):
    """Encode query parameters for the Web API.

    Dataverse rejects '+' for spaces inside $filter expressions and expects
    '%20' according to RFC 3986.
    """
    encoded = urlencode(params, doseq=True, safe="$,()'")
    return encoded.replace('+', '%20')


class DataverseAPIError(ValueError):
    """Raised when the Web API answers with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class DataverseClient:
    """Client for the Dataverse OData v4 Web API."""

    def __init__(self, config: DataverseConfig, verbose: bool = False):
        self.config = config
        self.verbose = verbose
        self.base_url = config.api_base_url
        self.session = requests.Session()
        self.session.headers.update(ODATA_HEADERS)
        self.session.headers['User-Agent'] = USER_AGENT
        if config.access_token:
            self.session.headers['Authorization'] = f"Bearer {config.access_token}"

    @property
    def dataverse_url(self) -> str:
        return self.config.dataverse_url

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Client VERBOSE] {message}", file=sys.stderr)

    def _build_url(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> str:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        if params:
            query = encode_query_params({k: v for k, v in params.items() if v is not None})
            if query:
                url = f"{url}&{query}" if '?' in url else f"{url}?{query}"
        return url

    def _parse_error(self, response: requests.Response) -> DataverseAPIError:
        """Turn an error response into a DataverseAPIError with the OData message."""
        status = response.status_code
        try:
            data = response.json()
        except ValueError:
            text = (response.text or '').strip()
            detail = text[:500] if text else f"HTTP {status}: {response.reason}"
            return DataverseAPIError(f"Dataverse API Error: {detail} (Status: {status})", status_code=status)

        error = data.get('error') if isinstance(data, dict) else None
        if isinstance(error, dict):
            message = error.get('message')
            if isinstance(message, dict):
                message = message.get('value') or json.dumps(message)
            code = error.get('code')
            return DataverseAPIError(
                f"Dataverse API Error: {message or 'Unknown error'} (Code: {code})",
                status_code=status, code=code
            )
        if isinstance(data, dict) and 'Message' in data:
            return DataverseAPIError(f"Dataverse API Error: {data['Message']}", status_code=status)
        return DataverseAPIError(
            f"Dataverse API Error: {json.dumps(data)[:500]} (Status: {status})", status_code=status
        )

    def _make_request(self, method: str, endpoint: str, params: Optional[Dict[str, Any]] = None,
                      json_body: Any = None, headers: Optional[Dict[str, str]] = None) -> Any:
        """Issue a blocking request and return the decoded JSON body (None for 204)."""
        url = self._build_url(endpoint, params)
        self._log_verbose(f"Requesting: {method} {url}")
        try:
            response = self.session.request(
                method, url, json=json_body, headers=headers, timeout=self.config.timeout
            )
        except requests.exceptions.RequestException as e:
            print(f"ERROR: {method} {url} failed: {e}", file=sys.stderr)
            raise DataverseAPIError(f"Dataverse request failed: {e}") from e

        if response.status_code >= 400:
            error = self._parse_error(response)
            self._log_verbose(f"{method} {url} returned {response.status_code}: {error}")
            raise error

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def _solution_headers(self) -> Dict[str, str]:
        context = self.config.solution_context
        if context:
            return {'MSCRM.SolutionUniqueName': context.solution_unique_name}
        return {}

    # --- Data operations ---

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await asyncio.to_thread(self._make_request, 'GET', endpoint, params)

    async def post(self, endpoint: str, data: Any = None, headers: Optional[Dict[str, str]] = None) -> Any:
        return await asyncio.to_thread(self._make_request, 'POST', endpoint, None, data, headers)

    async def patch(self, endpoint: str, data: Any = None, headers: Optional[Dict[str, str]] = None) -> Any:
        return await asyncio.to_thread(self._make_request, 'PATCH', endpoint, None, data, headers)

    async def put(self, endpoint: str, data: Any = None, headers: Optional[Dict[str, str]] = None) -> Any:
        return await asyncio.to_thread(self._make_request, 'PUT', endpoint, None, data, headers)

    async def delete(self, endpoint: str, headers: Optional[Dict[str, str]] = None) -> None:
        await asyncio.to_thread(self._make_request, 'DELETE', endpoint, None, None, headers)

    async def request(self, method: str, endpoint: str, data: Any = None,
                      headers: Optional[Dict[str, str]] = None) -> Any:
        """Issue an arbitrary method against an endpoint that may carry its own query string."""
        return await asyncio.to_thread(self._make_request, method.upper(), endpoint, None, data, headers)

    # --- Metadata operations ---
    # Writes are tagged with the active solution so new components land in it.

    async def get_metadata(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await asyncio.to_thread(self._make_request, 'GET', endpoint, params)

    async def post_metadata(self, endpoint: str, data: Any = None) -> Any:
        return await asyncio.to_thread(
            self._make_request, 'POST', endpoint, None, data, self._solution_headers()
        )

    async def patch_metadata(self, endpoint: str, data: Any = None) -> Any:
        return await asyncio.to_thread(
            self._make_request, 'PATCH', endpoint, None, data, self._solution_headers()
        )

    async def put_metadata(self, endpoint: str, data: Any = None) -> Any:
        return await asyncio.to_thread(
            self._make_request, 'PUT', endpoint, None, data, self._solution_headers()
        )

    async def delete_metadata(self, endpoint: str) -> None:
        await asyncio.to_thread(
            self._make_request, 'DELETE', endpoint, None, None, self._solution_headers()
        )

    async def call_action(self, action_name: str, parameters: Optional[Dict[str, Any]] = None,
                          entity_set_name: Optional[str] = None, entity_id: Optional[str] = None) -> Any:
        """Invoke an unbound action, or a bound one when an entity set and id are given."""
        if entity_set_name and entity_id:
            endpoint = f"{entity_set_name}({entity_id})/{BOUND_OPERATION_NAMESPACE}.{action_name}"
        else:
            endpoint = action_name
        return await self.post(endpoint, parameters or {})

    # --- Solution context ---

    def get_solution_context(self) -> Optional[SolutionContext]:
        return self.config.solution_context

    def clear_solution_context(self) -> Optional[SolutionContext]:
        previous = self.config.solution_context
        self.config.solution_context = None
        self._log_verbose("Solution context cleared.")
        return previous

    def get_customization_prefix(self) -> Optional[str]:
        context = self.config.solution_context
        return context.customization_prefix if context else None

    async def set_solution_context(self, solution_unique_name: str) -> SolutionContext:
        """Look up a solution and its publisher and make it the active context."""
        result = await self.get('solutions', {
            '$select': SOLUTION_SELECT,
            '$expand': SOLUTION_PUBLISHER_EXPAND,
            '$filter': f"uniquename eq '{solution_unique_name}'"
        })
        rows = (result or {}).get('value') or []
        if not rows:
            raise ValueError(f"Solution '{solution_unique_name}' not found.")

        solution = rows[0]
        publisher = solution.get('publisherid') or {}
        context = SolutionContext(
            solution_unique_name=solution.get('uniquename') or solution_unique_name,
            solution_display_name=solution.get('friendlyname'),
            publisher_unique_name=publisher.get('uniquename'),
            publisher_display_name=publisher.get('friendlyname'),
            customization_prefix=publisher.get('customizationprefix')
        )
        self.config.solution_context = context
        self._log_verbose(f"Solution context set to {context.solution_unique_name} (prefix {context.customization_prefix}).")
        return context
