"""FastAPI dependencies wiring the operation service and tools.

The repository resolver is built once at startup from the ``repositories``
configuration section. Caller identity comes from the X-Caller-Id header
and only affects visibility of owner-restricted repositories.
"""

from fastapi import Depends, Header

from scmgate.config import settings
from scmgate.logging_config import get_logger
from scmgate.repositories import ConfiguredRepositoryResolver, RepositoryResolver
from scmgate.scm import get_registry
from scmgate.scm.registry import ProviderRegistry
from scmgate.services.scm_operation_service import ScmOperationService
from scmgate.tools.executor import ScmTools

logger = get_logger(__name__)

_resolver: RepositoryResolver | None = None


def init_resolver() -> None:
    """Build the configuration-backed resolver. Called during app startup."""
    global _resolver  # noqa: PLW0603
    resolver = ConfiguredRepositoryResolver(settings.repositories)
    _resolver = resolver
    logger.info("Repository resolver initialized", repositories=len(resolver))


def get_resolver() -> RepositoryResolver:
    if _resolver is None:
        raise RuntimeError("Repository resolver not initialized, call init_resolver() first")
    return _resolver


def get_resolver_or_none() -> RepositoryResolver | None:
    return _resolver


def get_operation_service(
    registry: ProviderRegistry = Depends(get_registry),
    resolver: RepositoryResolver = Depends(get_resolver),
) -> ScmOperationService:
    return ScmOperationService(resolver, registry)


def get_tools(service: ScmOperationService = Depends(get_operation_service)) -> ScmTools:
    return ScmTools(service)


def get_caller(x_caller_id: str | None = Header(None)) -> str | None:
    """Caller identity, or None for unrestricted access."""
    if x_caller_id is None or not x_caller_id.strip():
        return None
    return x_caller_id.strip()
