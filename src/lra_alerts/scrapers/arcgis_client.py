"""
LRA ArcGIS Client

Fetches St. Louis Land Reutilization Authority inventory from an ArcGIS
feature layer. Uses a two-phase fetch: object ids first (exact total,
small payloads), then full attributes in fixed-size id batches.
"""
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence

import requests

from config.settings import Settings, settings as default_settings
from src.lra_alerts.errors import AuthenticationError, SourceError, TransientSourceError
from src.lra_alerts.models.listing import Listing
from src.lra_alerts.scrapers.auth import build_auth_strategy
from src.lra_alerts.transformers.field_normalizer import FieldNormalizer
from src.lra_alerts.utils.logger import get_logger
from src.lra_alerts.utils.retry import call_with_retry

logger = get_logger(__name__)

AUTH_HTTP_STATUSES = {401, 403}
AUTH_ARCGIS_CODES = {401, 403, 498, 499}
TRANSIENT_HTTP_STATUSES = {408, 429}


def sql_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def build_where(available: Sequence[str], coming_soon: Sequence[str], include_coming_soon: bool) -> str:
    """
    Build the status inclusion filter.

    Args:
        available: Statuses that are always included
        coming_soon: Statuses included when include_coming_soon is set
        include_coming_soon: Whether "coming soon" inventory is wanted

    Returns:
        SQL where clause, or "1=1" when no status is configured
    """
    statuses = list(available) + (list(coming_soon) if include_coming_soon else [])
    if not statuses:
        return "1=1"
    return f"Status IN ({','.join(sql_quote(s) for s in statuses)})"


def _chunks(items: Sequence[Any], size: int) -> List[Sequence[Any]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ArcGISClient:
    """
    Client for the LRA inventory feature layer.

    Retries transient failures with exponential backoff and jitter. An
    authentication failure triggers one forced token refresh and a single
    retry; anything beyond that surfaces as AuthenticationError.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        auth=None,
        normalizer: Optional[FieldNormalizer] = None,
        session: Optional[requests.Session] = None,
        sleep=None,
    ):
        """
        Initialize the ArcGIS client.

        Args:
            config: Settings override (for testing)
            auth: Auth strategy; built from settings when omitted
            normalizer: Field normalizer applied to every fetched record
            session: HTTP session override (for testing)
            sleep: Sleep function used between retries (for testing)
        """
        self.config = config or default_settings
        self.session = session or requests.Session()
        self.auth = auth or build_auth_strategy(self.config, session=self.session)
        self.normalizer = normalizer or FieldNormalizer()
        self.query_url = self.config.arcgis_layer_url.rstrip("/") + "/query"
        self._sleep = sleep
        logger.info("arcgis_client_initialized", query_url=self.query_url)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _post_once(self, params: Dict[str, Any], token: Optional[str]) -> Dict[str, Any]:
        data = {k: _form_value(v) for k, v in params.items() if v is not None}
        headers = {"Content-Type": "application/x-www-form-urlencoded;charset=UTF-8"}
        if token:
            if self.config.arcgis_token_as_param:
                data["token"] = token
            else:
                headers["Authorization"] = f"Bearer {token}"

        try:
            response = self.session.post(
                self.query_url,
                data=data,
                headers=headers,
                timeout=self.config.arcgis_timeout_seconds,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientSourceError(f"ArcGIS request failed: {e}") from e
        except requests.RequestException as e:
            raise SourceError(f"ArcGIS request failed: {e}") from e

        status = response.status_code
        if status in AUTH_HTTP_STATUSES:
            raise AuthenticationError(f"HTTP {status}: {response.text[:500]}", status_code=status)
        if status >= 500 or status in TRANSIENT_HTTP_STATUSES:
            raise TransientSourceError(f"HTTP {status}: {response.text[:500]}", status_code=status)
        if status >= 400:
            raise SourceError(f"HTTP {status}: {response.text[:500]}", status_code=status)

        try:
            payload = response.json()
        except ValueError as e:
            raise TransientSourceError(f"Non-JSON from ArcGIS: {response.text[:500]}") from e
        if not isinstance(payload, dict):
            raise TransientSourceError(f"Unexpected ArcGIS payload: {str(payload)[:500]}")

        error = payload.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = f"ArcGIS error {code}: {error.get('message') if isinstance(error, dict) else error}"
            if code in AUTH_ARCGIS_CODES:
                raise AuthenticationError(message, status_code=code)
            if isinstance(code, int) and (code >= 500 or code in TRANSIENT_HTTP_STATUSES):
                raise TransientSourceError(message, status_code=code)
            raise SourceError(message, status_code=code)

        return payload

    def _with_retry(self, params: Dict[str, Any], token: Optional[str]) -> Dict[str, Any]:
        kwargs = {
            "max_retries": self.config.arcgis_max_retries,
            "base_delay": self.config.arcgis_retry_base_delay,
            "jitter": self.config.arcgis_retry_jitter,
        }
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        return call_with_retry(lambda: self._post_once(params, token), **kwargs)

    def post_query(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a query to the layer with retry and auth-refresh handling.

        Args:
            params: ArcGIS query parameters

        Returns:
            Decoded JSON payload

        Raises:
            SourceUnavailableError: Transient failures exhausted the retries
            AuthenticationError: Credentials rejected after the forced refresh
            SourceError: Non-retriable request error
        """
        token = self.auth.get_token()
        try:
            return self._with_retry(params, token)
        except AuthenticationError as e:
            if not self.auth.supports_refresh:
                logger.error("arcgis_auth_failed", error=str(e), refreshable=False)
                raise
            logger.warning("arcgis_auth_rejected_refreshing", error=str(e))

        refreshed = self.auth.invalidate(token)
        try:
            return self._with_retry(params, refreshed)
        except AuthenticationError as e:
            logger.error("arcgis_auth_failed", error=str(e), refreshable=True)
            raise

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def build_where(self) -> str:
        return build_where(
            self.config.available_statuses,
            self.config.coming_soon_statuses,
            self.config.arcgis_include_coming_soon,
        )

    def fetch_object_ids(self, where: str) -> List[int]:
        """
        Page through every object id matching `where`.

        Paging continues while a page is full or the server reports
        exceededTransferLimit; a page that adds no new ids ends the loop.
        """
        page_size = self.config.arcgis_page_size
        offset = 0
        seen = set()
        ids: List[int] = []

        while True:
            payload = self.post_query({
                "where": where,
                "returnIdsOnly": True,
                "orderByFields": "OBJECTID",
                "f": "json",
                "resultRecordCount": page_size,
                "resultOffset": offset,
            })
            chunk = payload.get("objectIds") or []
            exceeded = bool(payload.get("exceededTransferLimit"))

            new_ids = [oid for oid in chunk if oid not in seen]
            seen.update(new_ids)
            ids.extend(new_ids)

            logger.debug(
                "object_id_page_fetched",
                offset=offset,
                returned=len(chunk),
                new=len(new_ids),
                exceeded_transfer_limit=exceeded
            )

            if len(chunk) < page_size and not exceeded:
                break
            if not new_ids:
                logger.warning("object_id_paging_stalled", offset=offset)
                break
            offset += page_size

        return ids

    def _fetch_batch(self, object_ids: Sequence[int]) -> List[Listing]:
        payload = self.post_query({
            "objectIds": ",".join(str(oid) for oid in object_ids),
            "outFields": ",".join(self.config.arcgis_field_list),
            "returnGeometry": False,
            "f": "json",
        })
        features = payload.get("features") or []
        return [
            self.normalizer.normalize(feature.get("attributes"))
            for feature in features
            if isinstance(feature, dict)
        ]

    def fetch_listings_by_ids(self, object_ids: Sequence[int]) -> List[Listing]:
        """
        Fetch and normalize full attributes for `object_ids`.

        Batches run concurrently (bounded by arcgis_max_concurrency); the
        result keeps batch order.
        """
        batches = _chunks(list(object_ids), self.config.arcgis_batch_size)
        if not batches:
            return []

        workers = min(self.config.arcgis_max_concurrency, len(batches))
        listings: List[Listing] = []
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="arcgis-batch")
        try:
            futures = [executor.submit(self._fetch_batch, batch) for batch in batches]
            for index, future in enumerate(futures):
                batch_listings = future.result()
                listings.extend(batch_listings)
                logger.debug("attribute_batch_fetched", batch=index, records=len(batch_listings))
        except Exception:
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        return listings

    def fetch_listings(self) -> List[Listing]:
        """
        Fetch every listing matching the configured status filter.

        Returns:
            Normalized listings, in OBJECTID order
        """
        where = self.build_where()
        logger.info("fetching_lra_listings", where=where)

        object_ids = self.fetch_object_ids(where)
        logger.info("object_ids_fetched", total=len(object_ids))
        if not object_ids:
            return []

        listings = self.fetch_listings_by_ids(object_ids)
        logger.info(
            "fetch_complete",
            total_listings=len(listings),
            generated_ids=sum(1 for listing in listings if listing.has_generated_id)
        )
        return listings

    def fetch_neighborhood_names(self) -> List[str]:
        """
        Distinct neighborhood values across the whole layer, sorted.
        """
        field = self.config.arcgis_neighborhood_field
        page_size = self.config.arcgis_page_size
        offset = 0
        names = set()

        while True:
            payload = self.post_query({
                "where": "1=1",
                "outFields": field,
                "returnGeometry": False,
                "returnDistinctValues": True,
                "orderByFields": f"{field} ASC",
                "f": "json",
                "resultRecordCount": page_size,
                "resultOffset": offset,
            })
            features = payload.get("features") or []
            for feature in features:
                value = ((feature or {}).get("attributes") or {}).get(field)
                if value is not None:
                    name = str(value).strip()
                    if name:
                        names.add(name)

            if len(features) < page_size:
                break
            offset += page_size

        return sorted(names)