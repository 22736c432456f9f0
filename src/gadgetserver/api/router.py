# src/gadgetserver/api/router.py

from fastapi import APIRouter
from gadgetserver.api.v1 import proxy
from gadgetserver.api.v1 import js
from gadgetserver.api.v1 import render
from gadgetserver.api.v1 import token
from gadgetserver.api.v1 import cert

# All gadget endpoints live under /gadgets
router = APIRouter(prefix="/gadgets")

router.include_router(proxy.router, tags=["Gadgets - Proxy"])
router.include_router(js.router, tags=["Gadgets - Features"])
router.include_router(render.router, tags=["Gadgets - Render"])
router.include_router(token.router, tags=["Gadgets - Security Token"])

# Published at the server root so remote sites can find it
public_router = APIRouter()
public_router.include_router(cert.router, tags=["Public"])
