"""Constants for the IBM Cloud Operator."""

# API Group
API_GROUP = "ibmcloud.ibm.com"
API_VERSION = "v1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

# Resource Kinds
KIND_SERVICE = "Service"
KIND_BINDING = "Binding"

# Resource plurals
PLURAL_SERVICES = "services"
PLURAL_BINDINGS = "bindings"

# Labels
LABEL_MANAGED_BY = f"{API_GROUP}/managed-by"

# Annotations
ANNOTATION_INSTANCE_ID = f"{API_GROUP}/instanceId"
ANNOTATION_KEY_ID = f"{API_GROUP}/keyId"
ANNOTATION_SELF_HEALING = f"{API_GROUP}/self-healing"

# Annotations written on binding secrets
SECRET_ANNOTATION_INSTANCE_ID = "service-instance-id"
SECRET_ANNOTATION_KEY_ID = "service-key-id"
SECRET_ANNOTATION_BINDING_FROM = "bindingFromName"

# Finalizers
SERVICE_FINALIZER = "service.ibmcloud.ibm.com"
BINDING_FINALIZER = "binding.ibmcloud.ibm.com"

# Field Manager
FIELD_MANAGER = "ibmcloud-operator"
CONTROLLER_NAME = "ibmcloud-operator"

# Plans and service class types
ALIAS_PLAN = "alias"
SERVICE_CLASS_TYPE_CF = "CF"

# Persisted marker for an external ID whose creation has started
IN_PROGRESS = "IN PROGRESS"

# Resource states
STATE_PENDING = "Pending"
STATE_ONLINE = "Online"
STATE_FAILED = "Failed"
STATE_DELETING = "Deleting"

MESSAGE_PROCESSING = "Processing Resource"

# Provider lifecycle states that mean the instance is usable
ONLINE_PROVIDER_STATES = frozenset({"succeeded", "active", "provisioned"})

# Credentials placeholder returned when the caller may not read the key
REDACTED_KEY = "REDACTED"

# Default IAM role for new credentials
DEFAULT_ROLE = "Manager"

# Operator configuration records
SEED_SECRET = "secret-ibm-cloud-operator"
SEED_DEFAULTS = "config-ibm-cloud-operator"
SEED_INSTALL = "ibm-cloud-operator"
DEFAULT_NAMESPACE = "default"
DEFAULT_REGION = "us-south"

# Binding parameters with special meaning
PARAM_SKIP_OWNER_REFERENCES = "skipOwnerReferences"
PARAM_ROLE_CRN = "role_crn"

# Condition Types
COND_READY = "Ready"
COND_PARENT_NOT_READY = "ParentNotReady"
COND_CREATION_FAILED = "CreationFailed"

# Event Reasons
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_REASON_INSTANCE_CREATED = "InstanceCreated"
EVENT_REASON_INSTANCE_ADOPTED = "InstanceAdopted"
EVENT_REASON_INSTANCE_DELETED = "InstanceDeleted"
EVENT_REASON_INSTANCE_MISSING = "InstanceMissing"
EVENT_REASON_KEY_CREATED = "KeyCreated"
EVENT_REASON_KEY_DELETED = "KeyDeleted"
EVENT_REASON_SECRET_RECREATED = "SecretRecreated"
EVENT_REASON_SPEC_RESTORED = "SpecRestored"
