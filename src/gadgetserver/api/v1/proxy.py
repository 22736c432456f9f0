# src/gadgetserver/api/v1/proxy.py

from typing import Optional
from fastapi import APIRouter, Header, Query, Request, Response
from pydantic import ValidationError as PydanticValidationError
from gadgetserver.core.context import AppContext
from gadgetserver.api.dependencies.context import TokenContextDep
from gadgetserver.schemas.gadgets import BatchMakeRequest, MakeRequestParams
from gadgetserver.services.exceptions import ValidationError
from gadgetserver.services.proxy_service import ProxyService

router = APIRouter()

JSON_MEDIA_TYPE = "application/json; charset=utf-8"

async def _make_request_params(request: Request) -> MakeRequestParams:
    values = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        values.update({k: v for k, v in form.items() if isinstance(v, str)})
    try:
        return MakeRequestParams.model_validate(values)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid makeRequest parameters: {e.errors()[0]['loc']} {e.errors()[0]['msg']}")

# ==============================================================================
# makeRequest
# ==============================================================================

@router.api_route("/makeRequest", methods=["GET", "POST"], summary="Fetch remote content for a gadget")
async def make_request(
    request: Request,
    context: AppContext = TokenContextDep,
):
    """
    gadgets.io.makeRequest backend. The answer is JSON prefixed with an
    unparseable sentinel, keyed by the URL the gadget asked for.
    """
    params = await _make_request_params(request)
    content = await ProxyService(context).make_request(params)
    return Response(content=content, media_type=JSON_MEDIA_TYPE)

@router.post("/makeRequest/batch", summary="Fetch several remote resources concurrently")
async def make_batch_request(
    data: BatchMakeRequest,
    context: AppContext = TokenContextDep,
):
    content = await ProxyService(context).make_batch_request(data.requests)
    return Response(content=content, media_type=JSON_MEDIA_TYPE)

# ==============================================================================
# Raw proxy
# ==============================================================================

@router.get("/proxy", summary="Raw content proxy")
async def proxy(
    url: str = Query(...),
    refresh: Optional[int] = Query(None, ge=0),
    nocache: bool = Query(False),
    if_none_match: Optional[str] = Header(None),
    context: AppContext = TokenContextDep,
):
    result = await ProxyService(context).proxy(url, refresh=refresh, if_none_match=if_none_match, no_cache=nocache)
    return Response(content=result.content, status_code=result.status, headers=result.headers)
