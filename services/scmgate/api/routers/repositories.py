"""Repository archive endpoint.

Endpoints:
    GET /api/v1/repositories/{repository_id}/archive?branch=   (streamed zip)

The body is relayed chunk by chunk from the provider. When the client goes
away the response generator is closed, which closes the upstream
connection.
"""

from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from scmgate.api.dependencies import get_caller, get_operation_service
from scmgate.logging_config import get_logger
from scmgate.scm.archive import ArchiveStream
from scmgate.scm.protocol import (
    AccessOrNotFoundError,
    BranchNotFoundError,
    NotFoundError,
    ProviderConnectionError,
    ProviderServerError,
    RepositoryNotFoundError,
    ScmError,
    UnexpectedRedirectError,
)
from scmgate.services.scm_operation_service import ScmOperationService

router = APIRouter(tags=["repositories"])
logger = get_logger(__name__)


def _status_for(error: ScmError) -> int:
    match error:
        case NotFoundError() | RepositoryNotFoundError() | BranchNotFoundError():
            return 404
        case AccessOrNotFoundError():
            return 403
        case UnexpectedRedirectError() | ProviderServerError() | ProviderConnectionError():
            return 502
        case _:
            return 400


async def _relay(stream: ArchiveStream, repository_id: str) -> AsyncIterator[bytes]:
    total = 0
    try:
        async for chunk in stream:
            total += len(chunk)
            yield chunk
    except ScmError as e:
        # Headers are already sent, all that is left is to abort the body
        logger.error("Archive relay failed", repository_id=repository_id, error=str(e), sent=total)
        raise
    finally:
        await stream.aclose()
        logger.debug("Archive relay finished", repository_id=repository_id, sent=total)


def _filename(repository_id: str, branch: str | None) -> str:
    suffix = branch.replace("/", "-") if branch else "default"
    return f"{repository_id}-{suffix}.zip"


@router.get("/repositories/{repository_id}/archive")
async def download_archive(
    repository_id: str,
    branch: str | None = Query(None),
    service: ScmOperationService = Depends(get_operation_service),
    caller: str | None = Depends(get_caller),
) -> StreamingResponse:
    outcome = await service.download_archive(repository_id, branch, caller)
    if not outcome.ok:
        raise HTTPException(status_code=_status_for(outcome.error), detail=str(outcome.error))

    stream = outcome.value
    disposition = (
        stream.content_disposition or f'attachment; filename="{_filename(repository_id, branch)}"'
    )
    logger.info("Streaming archive", repository_id=repository_id, branch=branch)
    return StreamingResponse(
        _relay(stream, repository_id),
        media_type=stream.content_type,
        headers={"Content-Disposition": disposition},
        background=BackgroundTask(stream.aclose),
    )
