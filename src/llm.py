import certifi
import functools
import ssl
import httpx
from typing import Optional
from langchain_openai import ChatOpenAI
from settings import settings

_http_async_client: Optional[httpx.AsyncClient] = None


def _get_http_async_client() -> httpx.AsyncClient:
    global _http_async_client
    if _http_async_client is None or _http_async_client.is_closed:
        ca_certs = certifi.where()
        ssl_context = ssl.create_default_context(cafile=ca_certs)
        _http_async_client = httpx.AsyncClient(verify=ssl_context, timeout=60.0)
    return _http_async_client


@functools.lru_cache(maxsize=4)
def build_chat_llm(
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    model_name: Optional[str] = None,
) -> Optional[ChatOpenAI]:
    """
    Chat model used by the planner. Returns None when no API key is configured,
    which makes the planner fall back to its local plans.

    Models are cached per argument set and share one HTTP connection pool;
    ``aclose_chat_llm`` releases both.
    """
    api_key = api_key or settings.openai_api_key
    if not api_key:
        return None

    return ChatOpenAI(
        model=model_name or settings.model_name or "gpt-4o-mini",
        api_key=api_key,
        base_url=base_url or settings.openai_base_url,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        http_async_client=_get_http_async_client(),
    )


async def aclose_chat_llm() -> None:
    global _http_async_client
    build_chat_llm.cache_clear()
    if _http_async_client is not None:
        await _http_async_client.aclose()
        _http_async_client = None
