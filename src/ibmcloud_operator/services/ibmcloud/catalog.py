"""Global catalog lookups for service offerings, plans and deployments."""

from __future__ import annotations

import logging
from typing import Any

from ...utils.cache import TTLCache, make_cache_key
from ...utils.errors import NotFoundError, SpecError
from .http import ProviderHTTPClient

logger = logging.getLogger(__name__)

CATALOG_CACHE_TTL_SECONDS = 3600.0


class GlobalCatalog:
    """Resolves names from a Service spec into catalog identifiers.

    Catalog entries change rarely, so every lookup is cached.
    """

    def __init__(self, http: ProviderHTTPClient, cache: TTLCache | None = None) -> None:
        self._http = http
        self._cache = cache or TTLCache(ttl=CATALOG_CACHE_TTL_SECONDS)

    def _children(self, entry_id: str, kind: str) -> list[dict[str, Any]]:
        body = self._http.get(f"/api/v1/{entry_id}/{kind}", f"list_{kind}s", params={"include": "*"})
        return list((body or {}).get("resources") or [])

    def find_service(self, name: str) -> dict[str, Any]:
        """Find a service offering by name.

        Raises:
            SpecError: If the catalog has no such service
        """

        def lookup() -> dict[str, Any]:
            body = self._http.get(
                "/api/v1", "find_service", params={"q": f"name:{name} active:true", "include": "*"}
            )
            for entry in (body or {}).get("resources") or []:
                if entry.get("name") == name:
                    return entry
            raise SpecError(f"service {name} not found in the catalog")

        return self._cache.get_or_set(make_cache_key("service", name), lookup)

    def service_name(self, service_id: str) -> str:
        """Name of the service offering with the given catalog ID."""

        def lookup() -> str:
            body = self._http.get(f"/api/v1/{service_id}", "get_service")
            return (body or {}).get("name", "")

        return self._cache.get_or_set(make_cache_key("service-name", service_id), lookup)

    def plan_id(self, service: dict[str, Any], plan: str) -> str:
        """Resolve a plan name of a service into its catalog ID.

        A plan that matches no name is accepted when it is itself a valid
        plan ID.

        Raises:
            SpecError: If the plan is neither a name nor an ID
        """

        def lookup() -> str:
            for entry in self._children(service["id"], "plan"):
                if entry.get("name") == plan:
                    return entry["id"]
            try:
                self._http.get(f"/api/v1/{plan}", "get_plan")
            except NotFoundError as e:
                raise SpecError(f"plan {plan} not found for service {service.get('name')}") from e
            return plan

        return self._cache.get_or_set(make_cache_key("plan", service["id"], plan), lookup)

    def deployment_crn(self, plan_id: str, plan: str, location: str) -> str:
        """Catalog CRN of the plan's resource-controller deployment in ``location``.

        Raises:
            SpecError: If the plan is not deployed there
        """
        deployments = self._cache.get_or_set(
            make_cache_key("deployments", plan_id), lambda: self._children(plan_id, "deployment")
        )
        if not deployments:
            raise SpecError(f"Failed: No deployment found for service plan : {plan}")

        supported_locations: list[str] = []
        for deployment in deployments:
            metadata = deployment.get("metadata") or {}
            if not metadata.get("rc_compatible"):
                continue
            deployment_location = (metadata.get("deployment") or {}).get("location", "")
            if deployment_location == location:
                return deployment.get("catalog_crn", "")
            if deployment_location not in supported_locations:
                supported_locations.append(deployment_location)

        raise SpecError(
            f"Failed: No deployment found for service plan {plan} at location {location}. "
            f"Valid location(s) are: {supported_locations}. "
            "Use service instance example if the service is a Cloud Foundry service"
        )
