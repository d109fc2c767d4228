from fastapi import HTTPException, status

from site_deploy.services.errors import DeploymentError

_STATUS_BY_CODE = {
    "site_not_found": status.HTTP_404_NOT_FOUND,
    "domain_not_found": status.HTTP_404_NOT_FOUND,
    "unknown_deployment": status.HTTP_404_NOT_FOUND,
    "compilation_failed": status.HTTP_422_UNPROCESSABLE_CONTENT,
    "artifacts_missing": status.HTTP_409_CONFLICT,
    "routing_conflict": status.HTTP_409_CONFLICT,
    "nothing_live": status.HTTP_409_CONFLICT,
    "domain_not_active": status.HTTP_409_CONFLICT,
    "upload_failed": status.HTTP_502_BAD_GATEWAY,
    "routing_update_failed": status.HTTP_502_BAD_GATEWAY,
    "routing_index_error": status.HTTP_502_BAD_GATEWAY,
    "routing_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
    "ledger_inconsistency": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def to_http_exception(exc: DeploymentError) -> HTTPException:
    return HTTPException(
        status_code=_STATUS_BY_CODE.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"error": exc.code, "message": str(exc)},
    )
