# src/gadgetserver/api/dependencies/context.py

import hmac
import logging
from fastapi import Depends, Request
from typing import Optional
from gadgetserver.core.context import AppContext
from gadgetserver.middleware import SECURITY_TOKEN_PARAM
from gadgetserver.services.exceptions import TokenInvalidError

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

# --- 步骤1: 纯粹的基础上下文构建器 ---
async def get_base_context(request: Request) -> AppContext:
    """
    只负责从 app.state 中组装进程级共享对象。
    它的 'security_token' 字段总是 None。
    """
    state = request.app.state
    return AppContext(
        settings=state.settings,
        catalog=state.catalog,
        resolver=state.resolver,
        content_loader=state.content_loader,
        cache=state.cache,
        fetcher=state.fetcher,
        token_service=state.token_service,
    )

async def _raw_security_token(request: Request) -> Optional[str]:
    raw = getattr(request.state, "raw_security_token", None)
    if raw:
        return raw
    content_type = request.headers.get("content-type", "")
    if request.method == "POST" and content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        value = form.get(SECURITY_TOKEN_PARAM)
        if isinstance(value, str) and value:
            return value
    return None

# --- 步骤2: 解码安全令牌的上下文 ---
async def get_token_context(
    request: Request,
    context: AppContext = Depends(get_base_context),
) -> AppContext:
    """
    解码请求携带的 `st`。缺失时按配置退化为匿名令牌，
    无效或过期时抛出 TokenError（由全局异常处理器转换为 401）。
    """
    raw = await _raw_security_token(request)
    context.security_token = context.token_service.extract(raw)
    request.state.security_token = context.security_token
    return context

# --- 步骤3: 令牌签发方（容器）的上下文 ---
async def get_issuer_context(
    request: Request,
    context: AppContext = Depends(get_base_context),
) -> AppContext:
    """
    只有持有 TOKEN_ISSUER_SECRET 的容器站点才能签发令牌。
    未配置该密钥时签发接口整体关闭。
    """
    expected = context.settings.TOKEN_ISSUER_SECRET
    presented = getattr(request.state, "token_issuer_secret", None)
    if not expected:
        logger.warning("Token issue request refused: TOKEN_ISSUER_SECRET is not configured.")
        raise TokenInvalidError()
    if not presented or not hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8")):
        raise TokenInvalidError()
    return context

# --- 便捷依赖 ---
BaseContextDep = Depends(get_base_context)
TokenContextDep = Depends(get_token_context)
IssuerContextDep = Depends(get_issuer_context)
