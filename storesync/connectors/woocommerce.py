"""
WooCommerce Connector

Reads and writes catalog records through the WooCommerce REST API (wc/v3).
Source of truth for the remote side of the sync.
"""
import base64
import httpx
from typing import Any, Dict, List, Optional

from storesync.config import CatalogConfig, Settings, get_settings
from storesync.connectors.base import BaseConnector
from storesync.exceptions import NetworkError, UnknownError, ValidationError, error_for_status
from storesync.utils.logger import log
from storesync.utils.pagination import BoundedPaginator

# Entity type -> REST resource. Metadata scans only ask for the fields diffing needs.
# "incremental" resources accept modified_after on list requests.
RESOURCES: Dict[str, Dict[str, Any]] = {
    "products": {
        "path": "/products",
        "metadata_fields": "id,date_modified,name,sku,type,status",
        "list_params": {"status": "any"},
        "incremental": True,
    },
    "customers": {
        "path": "/customers",
        "metadata_fields": "id,date_modified,email,first_name,last_name",
        "list_params": {"role": "all"},
        "incremental": False,
    },
    "orders": {
        "path": "/orders",
        "metadata_fields": "id,date_modified,number,status,total",
        "list_params": {"status": "any"},
        "incremental": True,
    },
    # Categories carry no date_modified; discovery only sees them as missing
    "categories": {
        "path": "/products/categories",
        "metadata_fields": "id,name,slug,parent,count",
        "list_params": {},
        "incremental": False,
    },
}

AUTH_FAILURE_STATUSES = (401, 403)


class WooCommerceConnector(BaseConnector):
    """
    Connector for the WooCommerce REST API

    Authentication tries an HTTP Basic header first and, when the store
    answers 401/403, repeats the same request once with consumer_key /
    consumer_secret query parameters. Some hosts strip the Authorization
    header, so the fallback is decided per request.
    """

    def __init__(
        self,
        config: CatalogConfig,
        entity_type: str = "products",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize WooCommerce connector

        Args:
            config: Tenant connection (base URL and API credentials)
            entity_type: Which collection to sync (a key of RESOURCES)
            transport: Optional httpx transport (tests use httpx.MockTransport)
            settings: Settings override; defaults to the cached application settings
        """
        if entity_type not in RESOURCES:
            raise ValidationError(f"Unsupported entity type for WooCommerce: {entity_type}")

        super().__init__(source_name="woocommerce", entity_type=entity_type)

        self.config = config
        self.settings = settings or get_settings()
        self.transport = transport
        self.resource = RESOURCES[entity_type]
        self.api_root = f"{config.base_url}{self.settings.catalog_api_path}"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def iter_pages(self, full_records: bool = False, modified_after: Optional[str] = None) -> BoundedPaginator:
        """
        Lazy, bounded page iterator over the resource.

        Metadata mode asks only for the diffing fields at 100 per page; full
        record mode returns whole records at 25 per page.

        Args:
            full_records: Return whole records instead of the diffing fields
            modified_after: UTC ISO timestamp; only records modified later are
                listed. Ignored (with a warning) for resources that cannot filter.
        """
        if modified_after and not self.resource["incremental"]:
            log.warning(f"WooCommerce {self.entity_type} cannot filter by modification date, listing all")
            modified_after = None

        if full_records:
            return self._paginator(
                page_size=self.settings.catalog_record_page_size,
                fields=None,
                label=f"{self.entity_type} records",
                modified_after=modified_after,
            )
        return self._paginator(
            page_size=self.settings.catalog_metadata_page_size,
            fields=self.resource["metadata_fields"],
            label=f"{self.entity_type} metadata",
            modified_after=modified_after,
        )

    async def fetch_all_metadata(self) -> List[Dict[str, Any]]:
        """Fetch id/date_modified/identity fields for every remote record"""
        paginator = self.iter_pages()
        records = await paginator.collect()
        log.info(
            f"Fetched metadata for {len(records)} {self.entity_type} "
            f"from WooCommerce ({paginator.pages_fetched} pages)"
        )
        return records

    async def fetch_all_records(self, modified_after: Optional[str] = None) -> List[Dict[str, Any]]:
        """Fetch every remote record (or those modified after a timestamp) with its full payload"""
        paginator = self.iter_pages(full_records=True, modified_after=modified_after)
        records = await paginator.collect()
        log.info(
            f"Fetched {len(records)} full {self.entity_type} records "
            f"from WooCommerce ({paginator.pages_fetched} pages)"
            + (f", modified after {modified_after}" if modified_after else "")
        )
        return records

    async def fetch_one(self, entity_id: int) -> Dict[str, Any]:
        data = await self._request(
            "GET",
            f"{self.resource['path']}/{entity_id}",
            timeout=self.settings.catalog_fetch_timeout,
        )
        return self._expect_record(data, f"GET {self.entity_type} {entity_id}")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request("POST", self.resource["path"], json=payload)
        record = self._expect_record(data, f"POST {self.entity_type}")
        log.info(f"Created WooCommerce {self.entity_type} record {record.get('id')}")
        return record

    async def update(self, entity_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request("PUT", f"{self.resource['path']}/{entity_id}", json=payload)
        record = self._expect_record(data, f"PUT {self.entity_type} {entity_id}")
        log.info(f"Updated WooCommerce {self.entity_type} record {entity_id}")
        return record

    async def delete(self, entity_id: int) -> bool:
        await self._request(
            "DELETE",
            f"{self.resource['path']}/{entity_id}",
            params={"force": "true"},
        )
        log.info(f"Deleted WooCommerce {self.entity_type} record {entity_id}")
        return True

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    @staticmethod
    def _expect_record(data: Any, action: str) -> Dict[str, Any]:
        """A 2xx that should carry a record but has none is not a success"""
        if not isinstance(data, dict) or not data:
            raise UnknownError(f"WooCommerce {action} returned no record ({type(data).__name__})")
        return data

    def _paginator(
        self,
        page_size: int,
        fields: Optional[str],
        label: str,
        modified_after: Optional[str] = None,
    ) -> BoundedPaginator:
        async def fetch_page(page: int) -> List[Dict[str, Any]]:
            params = {"per_page": page_size, "page": page, **self.resource["list_params"]}
            if fields:
                params["_fields"] = fields
            if modified_after:
                params["modified_after"] = modified_after
                params["dates_are_gmt"] = "true"
            log.debug(f"Fetching {label} page {page}")
            data = await self._request("GET", self.resource["path"], params=params)
            if not isinstance(data, list):
                raise UnknownError(f"Unexpected {label} page payload: {type(data).__name__}")
            return data

        return BoundedPaginator(
            fetch_page,
            page_size=page_size,
            max_pages=self.settings.catalog_max_pages,
            delay_seconds=self.settings.catalog_page_delay_seconds,
            label=label,
        )

    def _get_headers(self, with_auth: bool = True) -> Dict[str, str]:
        """Get HTTP headers for WooCommerce API requests"""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self.settings.catalog_user_agent,
        }
        if with_auth:
            credentials = f"{self.config.api_key}:{self.config.api_secret}"
            headers["Authorization"] = "Basic " + base64.b64encode(credentials.encode()).decode()
        return headers

    async def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        params: Optional[Dict[str, Any]],
        json: Optional[Dict[str, Any]],
        timeout: float,
    ) -> httpx.Response:
        async with httpx.AsyncClient(transport=self.transport, timeout=timeout) as client:
            return await client.request(method, url, params=params, json=json, headers=headers)

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Perform one logical request with the header -> query-param auth fallback.

        Raises:
            AuthenticationError: both credential encodings were rejected
            NotFoundError / RateLimitedError / RemoteServerError / UnknownError:
                non-2xx response
            NetworkError: connection failure or timeout
        """
        url = f"{self.api_root}{path}"
        timeout = timeout or self.settings.catalog_request_timeout

        try:
            response = await self._send(method, url, self._get_headers(), params, json, timeout)

            if response.status_code in AUTH_FAILURE_STATUSES:
                log.warning(
                    f"WooCommerce rejected Basic auth ({response.status_code}) for "
                    f"{method} {path}, retrying with query parameters"
                )
                fallback_params = dict(params or {})
                fallback_params["consumer_key"] = self.config.api_key
                fallback_params["consumer_secret"] = self.config.api_secret
                response = await self._send(
                    method, url, self._get_headers(with_auth=False), fallback_params, json, timeout
                )

        except httpx.TimeoutException as e:
            self._record_request(failed=True)
            raise NetworkError(f"WooCommerce {method} {path} timed out after {timeout}s: {e}")
        except httpx.TransportError as e:
            self._record_request(failed=True)
            raise NetworkError(f"WooCommerce {method} {path} connection failed: {e}")

        if response.is_success:
            self._record_request()
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError:
                raise UnknownError(
                    f"WooCommerce {method} {path} returned a non-JSON body: {response.text[:200]}",
                    response.status_code,
                )

        self._record_request(failed=True)
        if response.status_code == 429:
            self._handle_rate_limit(response.headers.get("Retry-After"))

        message = self._error_message(response)
        log.error(f"WooCommerce {method} {path} failed: {response.status_code} - {message}")
        raise error_for_status(
            response.status_code,
            f"WooCommerce API error {response.status_code} on {method} {path}: {message}",
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Prefer the 'message' field of a JSON error body"""
        try:
            body = response.json()
        except ValueError:
            return response.text[:300] or response.reason_phrase
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return response.text[:300]
