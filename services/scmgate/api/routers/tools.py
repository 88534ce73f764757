"""Tool endpoints.

Endpoints:
    GET  /api/v1/tools         (list tool descriptors)
    POST /api/v1/tool/invoke   (invoke a tool)

Invocation failures are reported in the response envelope with a 200;
only malformed request bodies produce a 422.
"""

from fastapi import APIRouter, Depends

from scmgate.api.dependencies import get_caller, get_tools
from scmgate.logging_config import get_logger
from scmgate.tools.executor import ScmTools
from scmgate.tools.models import InvokeRequest, InvokeResponse, ToolDescriptor

router = APIRouter(tags=["tools"])
logger = get_logger(__name__)


@router.get("/tools", response_model=list[ToolDescriptor], response_model_by_alias=True)
async def list_tools(tools: ScmTools = Depends(get_tools)) -> list[ToolDescriptor]:
    return tools.descriptors()


@router.post("/tool/invoke", response_model=InvokeResponse, response_model_by_alias=True)
async def invoke_tool(
    request: InvokeRequest,
    tools: ScmTools = Depends(get_tools),
    caller: str | None = Depends(get_caller),
) -> InvokeResponse:
    response = await tools.invoke(request, caller)
    if response.error is not None:
        logger.info(
            "Tool invocation failed",
            tool=request.tool_id,
            request_id=request.id,
            code=response.error.code,
        )
    return response
