# src/gadgetserver/api/v1/js.py

from typing import Optional
from fastapi import APIRouter, Query, Response
from gadgetserver.core.context import AppContext
from gadgetserver.api.dependencies.context import BaseContextDep
from gadgetserver.services.render_service import RenderService

router = APIRouter()

@router.get("/js/{features}.js", summary="Concatenated feature JavaScript")
async def get_feature_js(
    features: str,
    v: Optional[str] = Query(None, description="Aggregate hash; a match enables long-lived caching."),
    c: bool = Query(False, description="Serve the container side libraries."),
    context: AppContext = BaseContextDep,
):
    result = await RenderService(context).get_js(features, version=v, container=c)
    return Response(content=result.content, media_type="application/javascript", headers=result.headers)
