# src/gadgetserver/api/v1/render.py

from fastapi import APIRouter
from gadgetserver.core.context import AppContext
from gadgetserver.api.dependencies.context import TokenContextDep
from gadgetserver.schemas.common import JsonResponse
from gadgetserver.schemas.gadgets import RenderBundle, RenderRequest
from gadgetserver.services.render_service import RenderService

router = APIRouter()

@router.post("/render", response_model=JsonResponse[RenderBundle], summary="Build the render bundle of a gadget")
async def render_gadget(
    data: RenderRequest,
    context: AppContext = TokenContextDep,
):
    """
    Resolves the gadget's features, loads their JavaScript and runs the
    declared preloads. The returned bundle is what an HTML renderer consumes.
    """
    bundle = await RenderService(context).render(data)
    return JsonResponse(data=bundle)
