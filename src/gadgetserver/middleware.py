# src/gadgetserver/middleware.py

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

SECURITY_TOKEN_PARAM = "st"
SECURITY_TOKEN_HEADER = "X-Security-Token"
TOKEN_ISSUER_HEADER = "X-Token-Issuer-Secret"

# 认证策略只从 request 中提取原始凭证，解码在依赖里完成
def _extract_query_token(request: Request) -> None:
    token = request.query_params.get(SECURITY_TOKEN_PARAM)
    if token:
        setattr(request.state, "raw_security_token", token)

def _extract_header_token(request: Request) -> None:
    token = request.headers.get(SECURITY_TOKEN_HEADER)
    if token:
        setattr(request.state, "raw_security_token", token)

def _extract_issuer_secret(request: Request) -> None:
    """Container credential for minting tokens (POST /gadgets/token)."""
    secret = request.headers.get(TOKEN_ISSUER_HEADER)
    if secret:
        setattr(request.state, "token_issuer_secret", secret)

class SecurityTokenMiddleware(BaseHTTPMiddleware):
    # later extractors win; a form field `st` is read by the dependency because
    # the body must not be consumed here
    TOKEN_EXTRACTORS = [
        _extract_query_token,
        _extract_header_token,
        _extract_issuer_secret,
    ]

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        # 为每个请求重置状态
        setattr(request.state, "raw_security_token", None)
        setattr(request.state, "security_token", None)
        setattr(request.state, "token_issuer_secret", None)

        for extractor in self.TOKEN_EXTRACTORS:
            extractor(request)

        response = await call_next(request)
        return response
