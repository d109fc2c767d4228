from __future__ import annotations


class DeploymentError(RuntimeError):
    """Base for publish/rollback failures; `code` is the stable machine identifier."""

    code = "deployment_error"


class SiteNotFound(DeploymentError):
    code = "site_not_found"


class CompilationError(DeploymentError):
    code = "compilation_failed"


class UploadError(DeploymentError):
    code = "upload_failed"


class UnknownDeployment(DeploymentError):
    code = "unknown_deployment"


class ArtifactsMissing(DeploymentError):
    code = "artifacts_missing"


class RoutingUpdateFailed(DeploymentError):
    code = "routing_update_failed"


class NothingLive(DeploymentError):
    code = "nothing_live"


class LedgerInconsistency(DeploymentError):
    """
    The routing index already points at `artifact_prefix` but the ledger commit failed.

    The live-traffic pointer and the system of record disagree until an operator
    reconciles the site's routing.
    """

    code = "ledger_inconsistency"

    def __init__(self, message: str, *, site_id: str, deployment_id: str, artifact_prefix: str) -> None:
        super().__init__(message)
        self.site_id = site_id
        self.deployment_id = deployment_id
        self.artifact_prefix = artifact_prefix


class DomainNotFound(DeploymentError):
    code = "domain_not_found"


class DomainNotActive(DeploymentError):
    code = "domain_not_active"
