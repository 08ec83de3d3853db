"""同源 LLM 代理路由

GET  /api/llm-proxy/health: 各 provider 密钥配置状态（proxy 模式的可用性探测）
POST /api/llm-proxy/{provider}: 服务端注入密钥后转发 chat completion
"""

from fastapi import APIRouter, Depends, Header, Query
from starlette.responses import JSONResponse

from ..deps import get_client_id, get_llm_proxy
from ..services.llm_proxy import LLMProxyService, ProxyChatRequest, ProxyError

router = APIRouter()


@router.get("/api/llm-proxy/health")
async def proxy_health(
    provider: str | None = Query(default=None),
    proxy: LLMProxyService = Depends(get_llm_proxy),
):
    return proxy.health(provider)


@router.post("/api/llm-proxy/{provider}")
async def proxy_completion(
    provider: str,
    body: ProxyChatRequest,
    client_id: str = Depends(get_client_id),
    x_reviewgen_proxy_token: str | None = Header(default=None),
    proxy: LLMProxyService = Depends(get_llm_proxy),
):
    trusted = proxy.is_trusted(x_reviewgen_proxy_token)
    try:
        payload = await proxy.forward(provider, body, client_id=client_id, trusted=trusted)
    except ProxyError as e:
        headers = {}
        if e.status_code == 429:
            headers["Retry-After"] = str(proxy.rate_limiter.retry_after(client_id))
        return JSONResponse(
            status_code=e.status_code,
            content={"error": {"code": e.code, "message": e.message}},
            headers=headers,
        )
    return payload
