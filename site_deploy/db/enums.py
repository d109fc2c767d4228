from enum import Enum


class SiteDomainStatusEnum(str, Enum):
    pending = "pending"
    verified = "verified"
    active = "active"
    disabled = "disabled"


class DeploymentRoutingStatusEnum(str, Enum):
    not_attempted = "not_attempted"
    failed = "failed"
    succeeded = "succeeded"
