"""Typed views over the Service and Binding custom resources."""

from __future__ import annotations

import copy
import enum
from dataclasses import dataclass, field
from typing import Any

from .constants import (
    ALIAS_PLAN,
    ANNOTATION_SELF_HEALING,
    IN_PROGRESS,
    SERVICE_CLASS_TYPE_CF,
)


class IDState(enum.Enum):
    """Lifecycle of the identifier of a remote resource."""

    UNSET = "unset"
    PENDING = "pending"
    BOUND = "bound"


@dataclass(frozen=True)
class ExternalID:
    """Identifier of a remote resource: unset, creation pending, or bound to an ID.

    Only ``serialize`` and ``parse`` know the persisted encoding, where a pending
    ID is stored as the ``IN PROGRESS`` marker.
    """

    state: IDState = IDState.UNSET
    value: str = ""

    @classmethod
    def unset(cls) -> ExternalID:
        return cls(IDState.UNSET)

    @classmethod
    def pending(cls) -> ExternalID:
        return cls(IDState.PENDING)

    @classmethod
    def bound(cls, value: str) -> ExternalID:
        if not value or value == IN_PROGRESS:
            raise ValueError(f"invalid remote resource ID {value!r}")
        return cls(IDState.BOUND, value)

    @classmethod
    def parse(cls, raw: str | None) -> ExternalID:
        if not raw:
            return cls.unset()
        if raw == IN_PROGRESS:
            return cls.pending()
        return cls.bound(raw)

    def serialize(self) -> str:
        if self.state is IDState.PENDING:
            return IN_PROGRESS
        return self.value

    @property
    def is_unset(self) -> bool:
        return self.state is IDState.UNSET

    @property
    def is_pending(self) -> bool:
        return self.state is IDState.PENDING

    @property
    def is_bound(self) -> bool:
        return self.state is IDState.BOUND

    def __str__(self) -> str:
        return self.serialize()


_CONTEXT_FIELDS = {
    "org": "org",
    "space": "space",
    "region": "region",
    "resource_group": "resourcegroup",
    "resource_group_id": "resourcegroupid",
    "resource_location": "resourcelocation",
    "user": "user",
}


@dataclass
class ResourceContext:
    """Where a service instance lives in the provider account."""

    org: str = ""
    space: str = ""
    region: str = ""
    resource_group: str = ""
    resource_group_id: str = ""
    resource_location: str = ""
    user: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ResourceContext:
        data = data or {}
        return cls(**{attr: str(data.get(key) or "") for attr, key in _CONTEXT_FIELDS.items()})

    def to_dict(self) -> dict[str, str]:
        return {key: getattr(self, attr) for attr, key in _CONTEXT_FIELDS.items() if getattr(self, attr)}

    @property
    def is_empty(self) -> bool:
        return not self.to_dict()


@dataclass
class KeyRef:
    """Reference to one key of a Secret or ConfigMap."""

    name: str
    key: str

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> KeyRef | None:
        if not data:
            return None
        return cls(name=data.get("name", ""), key=data.get("key", ""))

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "key": self.key}


@dataclass
class ParamSource:
    secret_key_ref: KeyRef | None = None
    config_map_key_ref: KeyRef | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ParamSource | None:
        if data is None:
            return None
        return cls(
            secret_key_ref=KeyRef.from_dict(data.get("secretKeyRef")),
            config_map_key_ref=KeyRef.from_dict(data.get("configMapKeyRef")),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.secret_key_ref is not None:
            result["secretKeyRef"] = self.secret_key_ref.to_dict()
        if self.config_map_key_ref is not None:
            result["configMapKeyRef"] = self.config_map_key_ref.to_dict()
        return result


@dataclass
class Param:
    """A named parameter, given inline or read from a Secret or ConfigMap key."""

    name: str
    value: Any = None
    value_from: ParamSource | None = None
    attributes: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Param:
        return cls(
            name=data.get("name", ""),
            value=data.get("value"),
            value_from=ParamSource.from_dict(data.get("valueFrom")),
            attributes=data.get("attributes") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name}
        if self.value is not None:
            result["value"] = self.value
        if self.value_from is not None:
            result["valueFrom"] = self.value_from.to_dict()
        if self.attributes:
            result["attributes"] = self.attributes
        return result


def _params_from(data: list[dict[str, Any]] | None) -> list[Param]:
    return [Param.from_dict(p) for p in data or []]


@dataclass
class Record:
    """Metadata shared by both custom resources, plus the raw object for write-back."""

    raw: dict[str, Any]
    name: str = ""
    namespace: str = ""
    uid: str = ""
    resource_version: str = ""
    generation: int = 0
    annotations: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    owner_references: list[dict[str, Any]] = field(default_factory=list)
    deletion_timestamp: str | None = None

    @staticmethod
    def _meta_kwargs(obj: dict[str, Any]) -> dict[str, Any]:
        meta = obj.get("metadata") or {}
        return {
            "raw": obj,
            "name": meta.get("name", ""),
            "namespace": meta.get("namespace", ""),
            "uid": meta.get("uid", ""),
            "resource_version": meta.get("resourceVersion", ""),
            "generation": meta.get("generation", 0) or 0,
            "annotations": dict(meta.get("annotations") or {}),
            "finalizers": list(meta.get("finalizers") or []),
            "owner_references": list(meta.get("ownerReferences") or []),
            "deletion_timestamp": meta.get("deletionTimestamp"),
        }

    @property
    def meta(self) -> dict[str, Any]:
        """Metadata in the shape kopf helpers and event emitters expect."""
        return self.raw.get("metadata") or {}

    @property
    def being_deleted(self) -> bool:
        return bool(self.deletion_timestamp)

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.finalizers

    def refresh(self, obj: dict[str, Any], keep_status: bool = False) -> None:
        """Adopt the object returned by the API after a successful write.

        With ``keep_status`` the locally modified status survives, for writes
        that do not carry the status subresource.
        """
        self.raw = obj
        meta = obj.get("metadata") or {}
        self.resource_version = meta.get("resourceVersion", self.resource_version)
        self.finalizers = list(meta.get("finalizers") or [])
        self.owner_references = list(meta.get("ownerReferences") or [])

    def _metadata_body(self) -> dict[str, Any]:
        meta = copy.deepcopy(self.raw.get("metadata") or {})
        meta["resourceVersion"] = self.resource_version
        meta["finalizers"] = list(self.finalizers)
        meta["ownerReferences"] = list(self.owner_references)
        return meta


def _merge(raw: dict[str, Any] | None, known: tuple[str, ...], values: dict[str, Any]) -> dict[str, Any]:
    merged = {k: v for k, v in (raw or {}).items() if k not in known}
    merged.update(values)
    return merged


_SERVICE_SPEC_KEYS = (
    "serviceClass",
    "serviceClassType",
    "plan",
    "externalName",
    "parameters",
    "tags",
    "context",
)


@dataclass
class ServiceSpec:
    service_class: str = ""
    service_class_type: str = ""
    plan: str = ""
    external_name: str = ""
    parameters: list[Param] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    context: ResourceContext = field(default_factory=ResourceContext)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ServiceSpec:
        data = data or {}
        return cls(
            service_class=data.get("serviceClass", ""),
            service_class_type=data.get("serviceClassType", ""),
            plan=data.get("plan", ""),
            external_name=data.get("externalName", ""),
            parameters=_params_from(data.get("parameters")),
            tags=list(data.get("tags") or []),
            context=ResourceContext.from_dict(data.get("context")),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"serviceClass": self.service_class, "plan": self.plan}
        if self.service_class_type:
            result["serviceClassType"] = self.service_class_type
        if self.external_name:
            result["externalName"] = self.external_name
        if self.parameters:
            result["parameters"] = [p.to_dict() for p in self.parameters]
        if self.tags:
            result["tags"] = list(self.tags)
        if not self.context.is_empty:
            result["context"] = self.context.to_dict()
        return result


_SERVICE_STATUS_KEYS = _SERVICE_SPEC_KEYS + (
    "state",
    "message",
    "instanceId",
    "dashboardURL",
    "conditions",
)


@dataclass
class ServiceStatus:
    """Observed state of a Service; ``state is None`` means never initialized."""

    state: str | None = None
    message: str = ""
    instance_id: ExternalID = field(default_factory=ExternalID.unset)
    service_class: str = ""
    service_class_type: str = ""
    plan: str = ""
    external_name: str = ""
    context: ResourceContext = field(default_factory=ResourceContext)
    parameters: list[Param] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    dashboard_url: str = ""
    conditions: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ServiceStatus:
        data = data or {}
        return cls(
            state=data.get("state") or None,
            message=data.get("message", ""),
            instance_id=ExternalID.parse(data.get("instanceId")),
            service_class=data.get("serviceClass", ""),
            service_class_type=data.get("serviceClassType", ""),
            plan=data.get("plan", ""),
            external_name=data.get("externalName", ""),
            context=ResourceContext.from_dict(data.get("context")),
            parameters=_params_from(data.get("parameters")),
            tags=list(data.get("tags") or []),
            dashboard_url=data.get("dashboardURL", ""),
            conditions=list(data.get("conditions") or []),
        )

    @property
    def initialized(self) -> bool:
        return self.state is not None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "state": self.state or "",
            "message": self.message,
            "serviceClass": self.service_class,
            "serviceClassType": self.service_class_type,
            "plan": self.plan,
        }
        if not self.instance_id.is_unset:
            result["instanceId"] = self.instance_id.serialize()
        if self.external_name:
            result["externalName"] = self.external_name
        if not self.context.is_empty:
            result["context"] = self.context.to_dict()
        if self.parameters:
            result["parameters"] = [p.to_dict() for p in self.parameters]
        if self.tags:
            result["tags"] = list(self.tags)
        if self.dashboard_url:
            result["dashboardURL"] = self.dashboard_url
        if self.conditions:
            result["conditions"] = self.conditions
        return result


@dataclass
class ServiceInstance(Record):
    spec: ServiceSpec = field(default_factory=ServiceSpec)
    status: ServiceStatus = field(default_factory=ServiceStatus)

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> ServiceInstance:
        return cls(
            spec=ServiceSpec.from_dict(obj.get("spec")),
            status=ServiceStatus.from_dict(obj.get("status")),
            **cls._meta_kwargs(obj),
        )

    @property
    def is_alias(self) -> bool:
        return self.spec.plan.lower() == ALIAS_PLAN

    @property
    def is_cf(self) -> bool:
        return self.spec.service_class_type == SERVICE_CLASS_TYPE_CF

    @property
    def external_name(self) -> str:
        return self.spec.external_name or self.name

    @property
    def self_healing(self) -> bool:
        """Whether a vanished remote instance may be recreated; never for alias plans."""
        if self.is_alias:
            return False
        return self.annotations.get(ANNOTATION_SELF_HEALING, "").lower() in ("true", "enabled")

    def refresh(self, obj: dict[str, Any], keep_status: bool = False) -> None:
        super().refresh(obj, keep_status)
        self.spec = ServiceSpec.from_dict(obj.get("spec"))
        if not keep_status:
            self.status = ServiceStatus.from_dict(obj.get("status"))

    def to_body(self) -> dict[str, Any]:
        body = copy.deepcopy(self.raw)
        body["metadata"] = self._metadata_body()
        body["spec"] = _merge(body.get("spec"), _SERVICE_SPEC_KEYS, self.spec.to_dict())
        body["status"] = _merge(body.get("status"), _SERVICE_STATUS_KEYS, self.status.to_dict())
        return body


_BINDING_SPEC_KEYS = (
    "serviceName",
    "serviceNamespace",
    "secretName",
    "role",
    "alias",
    "parameters",
)

_BINDING_STATUS_KEYS = (
    "state",
    "message",
    "instanceId",
    "keyInstanceId",
    "secretName",
    "conditions",
)


@dataclass
class BindingSpec:
    service_name: str = ""
    service_namespace: str = ""
    secret_name: str = ""
    role: str = ""
    alias: str = ""
    parameters: list[Param] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> BindingSpec:
        data = data or {}
        return cls(
            service_name=data.get("serviceName", ""),
            service_namespace=data.get("serviceNamespace", ""),
            secret_name=data.get("secretName", ""),
            role=data.get("role", ""),
            alias=data.get("alias", ""),
            parameters=_params_from(data.get("parameters")),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"serviceName": self.service_name}
        for key, value in (
            ("serviceNamespace", self.service_namespace),
            ("secretName", self.secret_name),
            ("role", self.role),
            ("alias", self.alias),
        ):
            if value:
                result[key] = value
        if self.parameters:
            result["parameters"] = [p.to_dict() for p in self.parameters]
        return result


@dataclass
class BindingStatus:
    """Observed state of a Binding; ``state is None`` means never initialized."""

    state: str | None = None
    message: str = ""
    instance_id: ExternalID = field(default_factory=ExternalID.unset)
    key_instance_id: ExternalID = field(default_factory=ExternalID.unset)
    secret_name: str = ""
    conditions: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> BindingStatus:
        data = data or {}
        return cls(
            state=data.get("state") or None,
            message=data.get("message", ""),
            instance_id=ExternalID.parse(data.get("instanceId")),
            key_instance_id=ExternalID.parse(data.get("keyInstanceId")),
            secret_name=data.get("secretName", ""),
            conditions=list(data.get("conditions") or []),
        )

    @property
    def initialized(self) -> bool:
        return self.state is not None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"state": self.state or "", "message": self.message}
        if not self.instance_id.is_unset:
            result["instanceId"] = self.instance_id.serialize()
        if not self.key_instance_id.is_unset:
            result["keyInstanceId"] = self.key_instance_id.serialize()
        if self.secret_name:
            result["secretName"] = self.secret_name
        if self.conditions:
            result["conditions"] = self.conditions
        return result


@dataclass
class Binding(Record):
    spec: BindingSpec = field(default_factory=BindingSpec)
    status: BindingStatus = field(default_factory=BindingStatus)

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> Binding:
        return cls(
            spec=BindingSpec.from_dict(obj.get("spec")),
            status=BindingStatus.from_dict(obj.get("status")),
            **cls._meta_kwargs(obj),
        )

    @property
    def is_alias(self) -> bool:
        return bool(self.spec.alias)

    @property
    def secret_name(self) -> str:
        return self.spec.secret_name or self.name

    @property
    def service_namespace(self) -> str:
        return self.spec.service_namespace or self.namespace

    def refresh(self, obj: dict[str, Any], keep_status: bool = False) -> None:
        super().refresh(obj, keep_status)
        self.spec = BindingSpec.from_dict(obj.get("spec"))
        if not keep_status:
            self.status = BindingStatus.from_dict(obj.get("status"))

    def to_body(self) -> dict[str, Any]:
        body = copy.deepcopy(self.raw)
        body["metadata"] = self._metadata_body()
        body["spec"] = _merge(body.get("spec"), _BINDING_SPEC_KEYS, self.spec.to_dict())
        body["status"] = _merge(body.get("status"), _BINDING_STATUS_KEYS, self.status.to_dict())
        return body
