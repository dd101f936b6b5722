"""
Plan Service Client

Client for fetching membership plans from the plan catalog service.
"""

import logging
from typing import List, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..models import MembershipPlan
from ..protocols import PlanServiceError

logger = logging.getLogger(__name__)

_transient = retry(
    retry=retry_if_exception_type(httpx.TransportError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, max=2),
    reraise=True,
)


class PlanClient:
    """Client for the plan catalog service"""

    def __init__(self, base_url: str = "http://plan:8230", timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _headers(self, tenant_id: str) -> dict:
        return {"X-Tenant-ID": tenant_id}

    @_transient
    async def _get(self, path: str, tenant_id: str, params: Optional[dict] = None) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(
                f"{self.base_url}{path}",
                params=params,
                headers=self._headers(tenant_id),
            )

    async def get_plan(self, tenant_id: str, plan_id: str) -> Optional[MembershipPlan]:
        """Get a plan by id, None when the catalog does not know it"""
        try:
            response = await self._get(f"/api/v1/plans/{plan_id}", tenant_id)
        except httpx.HTTPError as e:
            logger.error(f"Error fetching plan {plan_id}: {e}")
            raise PlanServiceError(f"Plan service unavailable: {e}") from e

        if response.status_code == 404:
            logger.warning(f"Plan {plan_id} not found")
            return None
        if response.status_code != 200:
            raise PlanServiceError(f"Plan service returned {response.status_code} for plan {plan_id}")
        return MembershipPlan(**response.json().get("plan", {}))

    async def list_active_plans(self, tenant_id: str) -> List[MembershipPlan]:
        """List every active plan for the tenant"""
        try:
            response = await self._get("/api/v1/plans", tenant_id, params={"is_active": "true"})
        except httpx.HTTPError as e:
            logger.error(f"Error listing plans: {e}")
            raise PlanServiceError(f"Plan service unavailable: {e}") from e

        if response.status_code != 200:
            raise PlanServiceError(f"Plan service returned {response.status_code} listing plans")
        return [MembershipPlan(**plan) for plan in response.json().get("plans", [])]


__all__ = ["PlanClient"]
