"""Builder for provider sessions resolved from a Service record."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import requests

from ..config import OperatorConfig
from ..constants import (
    DEFAULT_NAMESPACE,
    DEFAULT_REGION,
    SEED_DEFAULTS,
    SEED_INSTALL,
    SEED_SECRET,
)
from ..models import ResourceContext, ServiceInstance
from ..services.ibmcloud.base import RemoteResourceClient
from ..services.ibmcloud.catalog import GlobalCatalog
from ..services.ibmcloud.cf import CloudFoundryClient
from ..services.ibmcloud.http import ProviderHTTPClient
from ..services.ibmcloud.iam import IAMTokenProvider
from ..services.ibmcloud.resource_controller import ResourceControllerClient
from ..services.kube.store import ResourceStore
from ..utils.cache import TTLCache
from ..utils.errors import NotFoundError, OperatorError, ProviderError
from ..utils.rate_limit import RateLimiter
from ..utils.secrets import decode_secret_value

logger = logging.getLogger(__name__)

# Context fields filled from the operator config map when the spec leaves them empty
_DEFAULTED_CONTEXT_FIELDS = {
    "org": "org",
    "space": "space",
    "region": "region",
    "resource_group_id": "resourcegroupid",
    "user": "user",
}


@dataclass
class CloudSession:
    """Everything needed to act on one Service's remote instance.

    Attributes:
        client: Provider client variant for the service class type
        context: Resource context the instance lives in
        service_class_type: Service class type from the spec ("CF" or empty)
        plan_id: Catalog plan ID, empty for alias plans
        target: Deployment target (catalog CRN, or CF space GUID)
        resource_group_id: Resource group of the instance
        region: Region from the operator secret
    """

    client: RemoteResourceClient
    context: ResourceContext
    service_class_type: str = ""
    plan_id: str = ""
    target: str = ""
    resource_group_id: str = ""
    region: str = DEFAULT_REGION


class SessionResolver:
    """Resolves provider credentials, context and catalog IDs for Services.

    One resolver lives for the whole process; it owns the IAM token cache,
    the catalog cache and the provider rate limiter shared by every
    reconcile.
    """

    def __init__(self, store: ResourceStore, config: OperatorConfig) -> None:
        self.store = store
        self.config = config
        self._http_session = requests.Session()
        self._rate_limiter = RateLimiter(config.provider_rate_limit_per_second, api_type="ibmcloud")
        self._catalog_cache = TTLCache(ttl=3600.0)
        self._tokens = IAMTokenProvider(self._http(config.iam_endpoint, "iam"), TTLCache())

    def _http(self, base_url: str, api_type: str, token: Any = None) -> ProviderHTTPClient:
        return ProviderHTTPClient(
            base_url,
            api_type,
            token=token,
            timeout=self.config.provider_request_timeout,
            rate_limiter=self._rate_limiter,
            session=self._http_session,
        )

    def _management_namespace(self) -> str | None:
        """Namespace holding per-namespace operator records, when installed for management."""
        if not self.config.controller_namespace:
            return None
        try:
            config_map = self.store.get_config_map(self.config.controller_namespace, SEED_INSTALL)
        except NotFoundError:
            return None
        return (config_map.data or {}).get("namespace") or DEFAULT_NAMESPACE

    def _get_record(self, kind: str, namespace: str, name: str) -> Any:
        """Read an operator secret or config map for records in ``namespace``.

        Raises:
            NotFoundError: If the record exists nowhere it is looked for
        """
        management_ns = self._management_namespace()
        if management_ns is not None:
            if kind == "secret":
                return self.store.get_secret(management_ns, f"{namespace}-{name}")
            return self.store.get_config_map(management_ns, f"{namespace}-{name}")
        if kind == "secret":
            return self.store.get_secret_with_fallback(namespace, name)
        return self.store.get_config_map_with_fallback(namespace, name)

    def credentials(self, namespace: str) -> tuple[str, str]:
        """API key and region for records in ``namespace``.

        Raises:
            NotFoundError: If the operator secret is missing
        """
        secret = self._get_record("secret", namespace, SEED_SECRET)
        data = secret.data or {}
        if "api-key" not in data:
            raise OperatorError(f"{SEED_SECRET} has no api-key")
        api_key = decode_secret_value(data["api-key"]).strip()
        region = decode_secret_value(data["region"]).strip() if "region" in data else DEFAULT_REGION
        return api_key, region or DEFAULT_REGION

    def resolve_context(self, service: ServiceInstance) -> ResourceContext:
        """Resource context of a Service.

        A context already recorded in the status wins. Otherwise the spec
        context is completed from the operator config map.

        Raises:
            NotFoundError: If the operator config map is needed and missing
        """
        if not service.status.context.is_empty:
            context = ResourceContext(**vars(service.status.context))
        else:
            config_map = self._get_record("configmap", service.namespace, SEED_DEFAULTS)
            data = config_map.data or {}
            context = ResourceContext(**vars(service.spec.context))
            for attr, key in _DEFAULTED_CONTEXT_FIELDS.items():
                if not getattr(context, attr):
                    setattr(context, attr, data.get(key, ""))
        if not context.resource_location:
            context.resource_location = context.region
        return context

    def resolve(self, service: ServiceInstance) -> CloudSession:
        """Build the provider session for a Service.

        Raises:
            NotFoundError: If the operator secret or config map is missing
            SpecError: If the service class, plan or deployment cannot be resolved
            ProviderError: If a provider lookup fails
        """
        api_key, region = self.credentials(service.namespace)
        context = self.resolve_context(service)
        token = self._tokens.bind(api_key)

        try:
            if service.is_cf:
                return self._resolve_cf(service, context, region, token)
            return self._resolve_resource_controller(service, context, region, token)
        except NotFoundError as e:
            # Only missing operator records are reported as not found
            raise ProviderError(str(e)) from e

    def _resolve_cf(
        self,
        service: ServiceInstance,
        context: ResourceContext,
        region: str,
        token: Any,
    ) -> CloudSession:
        http = self._http(self.config.cf_endpoint_template.format(region=region), "cf", token)
        lookup = CloudFoundryClient(http)
        space_id = lookup.space_id(context.org, context.space)
        plan_id = ""
        if not service.is_alias:
            plan_id = lookup.plan_id(service.spec.service_class, service.spec.plan)
        return CloudSession(
            client=CloudFoundryClient(http, space_id=space_id),
            context=context,
            service_class_type=service.spec.service_class_type,
            plan_id=plan_id,
            target=space_id,
            region=region,
        )

    def _resolve_resource_controller(
        self,
        service: ServiceInstance,
        context: ResourceContext,
        region: str,
        token: Any,
    ) -> CloudSession:
        catalog = GlobalCatalog(
            self._http(self.config.global_catalog_endpoint, "catalog", token), self._catalog_cache
        )
        offering = catalog.find_service(service.spec.service_class)
        plan_id = ""
        target_crn = ""
        if not service.is_alias:
            plan_id = catalog.plan_id(offering, service.spec.plan)
            target_crn = catalog.deployment_crn(plan_id, service.spec.plan, context.region)

        client = ResourceControllerClient(
            self._http(self.config.resource_controller_endpoint, "resource_controller", token),
            self._http(self.config.iam_endpoint, "iam", token),
            catalog,
            resource_group_id=context.resource_group_id,
            plan_id=plan_id,
        )
        return CloudSession(
            client=client,
            context=context,
            service_class_type=service.spec.service_class_type,
            plan_id=plan_id,
            target=target_crn,
            resource_group_id=context.resource_group_id,
            region=region,
        )
