# src/gadgetserver/api/v1/cert.py

from fastapi import APIRouter, HTTPException, Request, Response, status

router = APIRouter()

@router.get("/public.crt", summary="Certificate for verifying signed fetches")
async def public_certificate(request: Request):
    cert = getattr(request.app.state, "public_cert", None)
    if not cert:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No signing certificate configured.")
    return Response(content=cert, media_type="application/x-x509-ca-cert")
