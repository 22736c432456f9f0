# src/gadgetserver/api/v1/token.py

from fastapi import APIRouter
from gadgetserver.core.context import AppContext
from gadgetserver.core.security import SecurityToken
from gadgetserver.api.dependencies.context import IssuerContextDep
from gadgetserver.schemas.common import JsonResponse
from gadgetserver.schemas.gadgets import TokenIssueRequest, TokenIssueResponse

router = APIRouter()

@router.post("/token", response_model=JsonResponse[TokenIssueResponse], summary="Issue a security token")
async def issue_token(
    data: TokenIssueRequest,
    context: AppContext = IssuerContextDep,
):
    """Container side: wraps the viewer's identity for one gadget iframe. Needs the issuer secret."""
    token = SecurityToken(**data.model_dump())
    return JsonResponse(data=TokenIssueResponse(token=context.token_service.issue(token)))
