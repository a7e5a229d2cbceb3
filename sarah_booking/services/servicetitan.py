# sarah_booking/services/servicetitan.py
"""
ServiceTitan gateway: OAuth client-credentials token handling plus typed
wrappers around the CRM, JPM, dispatch, accounting and marketing endpoints
the booking flow uses.

Every non-2xx response, transport failure or unreadable record raises
ExternalApiError; nothing is retried here.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from sarah_booking.core.config import Settings, settings
from sarah_booking.core.errors import ExternalApiError
from sarah_booking.core.logging import get_logger, mask_phone
from sarah_booking.schemas.servicetitan import (
    Address,
    AppointmentRecord,
    Campaign,
    CapacitySlot,
    Contact,
    CreatedCustomer,
    Customer,
    Job,
    JobRequest,
    Location,
)

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


def _iso_z(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class TokenProvider:
    """
    Bearer token cache for the client-credentials grant.

    Refreshes ``refresh_margin`` seconds before expiry. Concurrent callers
    share one in-flight refresh instead of each hitting the auth server.
    """

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        auth_url: str,
        *,
        refresh_margin: int = 60,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.auth_url = auth_url.rstrip("/")
        self.refresh_margin = refresh_margin
        self.timeout = timeout
        self._transport = transport
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self._inflight: Optional[asyncio.Future] = None

    @property
    def is_valid(self) -> bool:
        return bool(self._token) and self._clock() < self._expires_at - self.refresh_margin

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    async def get_token(self) -> str:
        if self.is_valid:
            return self._token  # type: ignore[return-value]

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._fetch())
        # shield: a cancelled waiter must not cancel the refresh other waiters share
        return await asyncio.shield(self._inflight)

    async def _fetch(self) -> str:
        if not self.client_id or not self.client_secret:
            raise ExternalApiError("ServiceTitan credentials are not configured", endpoint="/connect/token")

        logger.info("st_token_refresh")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.auth_url}/connect/token",
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                    },
                )
        except httpx.HTTPError as e:
            raise ExternalApiError(f"Token request failed: {e}", endpoint="/connect/token") from e

        if not resp.is_success:
            raise ExternalApiError(
                f"Token request rejected: {resp.status_code}",
                status=resp.status_code,
                body=resp.text,
                endpoint="/connect/token",
            )

        try:
            data = resp.json()
            token = data["access_token"]
        except (ValueError, KeyError) as e:
            raise ExternalApiError(
                "Token response missing access_token", status=resp.status_code,
                body=resp.text, endpoint="/connect/token",
            ) from e

        self._token = token
        self._expires_at = self._clock() + float(data.get("expires_in") or 900)
        return token


class ServiceTitanClient:
    """Thin async client; one short-lived httpx.AsyncClient per call."""

    def __init__(
        self,
        config: Settings = settings,
        *,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.tenant_id = config.ST_TENANT_ID
        self.base_url = config.ST_API_BASE_URL.rstrip("/")
        self.timeout = config.HTTP_TIMEOUT_SECONDS
        self._transport = transport
        self.tokens = token_provider or TokenProvider(
            config.ST_CLIENT_ID,
            config.ST_CLIENT_SECRET,
            config.ST_AUTH_URL,
            refresh_margin=config.TOKEN_REFRESH_MARGIN_SECONDS,
            timeout=config.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    def _path(self, api: str, resource: str) -> str:
        return f"/{api}/v2/tenant/{self.tenant_id}/{resource}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        if not self.tenant_id:
            raise ExternalApiError("ST_TENANT_ID is not configured", endpoint=path)

        token = await self.tokens.get_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "ST-App-Key": self.config.ST_APP_KEY or "",
            "Content-Type": "application/json",
        }

        logger.info("st_api_request", method=method, endpoint=path)
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.request(method, path, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.error("st_api_transport_error", endpoint=path, error=str(e))
            raise ExternalApiError(f"ServiceTitan request failed: {e}", endpoint=path) from e

        if resp.status_code == 401:
            self.tokens.invalidate()

        if not resp.is_success:
            logger.error("st_api_error", status=resp.status_code, endpoint=path, body=resp.text)
            raise ExternalApiError(
                f"ServiceTitan API error: {resp.status_code}",
                status=resp.status_code,
                body=resp.text,
                endpoint=path,
            )

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise ExternalApiError(
                "ServiceTitan returned a non-JSON body",
                status=resp.status_code, body=resp.text, endpoint=path,
            ) from e

    @staticmethod
    def _data(payload: Any) -> list[dict]:
        if isinstance(payload, dict):
            return list(payload.get("data") or [])
        if isinstance(payload, list):
            return payload
        return []

    @staticmethod
    def _parse(model: type[M], data: Any, endpoint: str) -> M:
        """Validate one platform record; a shape we cannot read is an API failure."""
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error("st_api_bad_payload", endpoint=endpoint, model=model.__name__, error=str(e))
            raise ExternalApiError(
                f"ServiceTitan returned an unreadable {model.__name__}",
                body=str(data)[:500], endpoint=endpoint,
            ) from e

    # ---------- Customers ----------

    async def find_customers_by_phone(self, phone: str) -> list[Customer]:
        path = self._path("crm", "customers")
        payload = await self._request("GET", path, params={"phone": phone, "pageSize": 5})
        customers = [self._parse(Customer, c, path) for c in self._data(payload)]
        logger.info("st_customer_lookup", phone=mask_phone(phone), matches=len(customers))
        return customers

    async def get_customer(self, customer_id: int) -> Customer:
        path = self._path("crm", f"customers/{customer_id}")
        payload = await self._request("GET", path)
        return self._parse(Customer, payload, path)

    async def list_customer_contacts(self, customer_id: int) -> list[Contact]:
        path = self._path("crm", f"customers/{customer_id}/contacts")
        payload = await self._request("GET", path)
        return [self._parse(Contact, c, path) for c in self._data(payload)]

    async def create_customer(self, name: str, address: Address, phone: str) -> CreatedCustomer:
        contacts = [{"type": "MobilePhone", "value": phone}]
        body = {
            "name": name,
            "type": "Residential",
            "address": address.to_payload(),
            "contacts": contacts,
            "locations": [{
                "name": name,
                "address": address.to_payload(),
                "contacts": contacts,
            }],
        }
        path = self._path("crm", "customers")
        payload = await self._request("POST", path, json=body)
        return self._parse(CreatedCustomer, payload, path)

    # ---------- Locations ----------

    async def list_locations(self, customer_id: int, page_size: int = 50) -> list[Location]:
        path = self._path("crm", "locations")
        payload = await self._request(
            "GET", path, params={"customerId": customer_id, "pageSize": page_size},
        )
        return [self._parse(Location, loc, path) for loc in self._data(payload)]

    async def create_location(self, customer_id: int, name: str, address: Address, phone: str) -> Location:
        body = {
            "customerId": customer_id,
            "name": name,
            "address": address.to_payload(),
            "contacts": [{"type": "MobilePhone", "value": phone}],
        }
        path = self._path("crm", "locations")
        payload = await self._request("POST", path, json=body)
        return self._parse(Location, payload, path)

    # ---------- Jobs ----------

    async def create_job(self, job: JobRequest) -> Job:
        path = self._path("jpm", "jobs")
        payload = await self._request("POST", path, json=job.to_payload())
        return self._parse(Job, payload, path)

    async def list_recent_jobs(self, customer_id: int, created_on_or_after: datetime) -> list[Job]:
        path = self._path("jpm", "jobs")
        payload = await self._request(
            "GET", path,
            params={"customerId": customer_id, "createdOnOrAfter": _iso_z(created_on_or_after)},
        )
        return [self._parse(Job, j, path) for j in self._data(payload)]

    # ---------- Capacity / appointments ----------

    async def get_capacity(self, starts_on_or_after: str, ends_on_or_before: str) -> list[CapacitySlot]:
        path = self._path("dispatch", "capacity")
        payload = await self._request(
            "POST", path,
            json={
                "startsOnOrAfter": starts_on_or_after,
                "endsOnOrBefore": ends_on_or_before,
                "skillBasedAvailability": False,
            },
        )
        slots = payload.get("availabilities") if isinstance(payload, dict) else payload
        return [self._parse(CapacitySlot, s, path) for s in (slots or [])]

    async def list_appointments(self, starts_on_or_after: str, starts_before: str) -> list[AppointmentRecord]:
        path = self._path("jpm", "appointments")
        payload = await self._request(
            "GET", path,
            params={"startsOnOrAfter": starts_on_or_after, "startsBefore": starts_before, "pageSize": 500},
        )
        return [self._parse(AppointmentRecord, a, path) for a in self._data(payload)]

    # ---------- Accounting ----------

    async def list_job_invoices(self, job_id: int) -> list[dict]:
        payload = await self._request("GET", self._path("accounting", "invoices"), params={"jobId": job_id})
        return self._data(payload)

    async def add_invoice_item(self, invoice_id: int, item: dict[str, Any]) -> Any:
        return await self._request(
            "PATCH", self._path("accounting", f"invoices/{invoice_id}/items"), json=item
        )

    # ---------- Marketing ----------

    async def find_campaign_by_phone(self, dialed_number: str) -> Optional[Campaign]:
        path = self._path("marketing", "campaigns")
        payload = await self._request(
            "GET", path, params={"campaignPhoneNumber": dialed_number, "pageSize": 5},
        )
        campaigns = [self._parse(Campaign, c, path) for c in self._data(payload)]
        active = [c for c in campaigns if c.active]
        return (active or campaigns or [None])[0]


_client: Optional[ServiceTitanClient] = None


def get_servicetitan() -> ServiceTitanClient:
    """Process-wide client (FastAPI dependency); shares one token cache."""
    global _client
    if _client is None:
        _client = ServiceTitanClient(settings)
    return _client
