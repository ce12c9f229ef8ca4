"""Search module"""
from .endpoints import EndpointPool
from .rate_limiter import RateGate
from .executor import SearchExecutor, AiohttpTransport, HttpResponse, create_search_executor

__all__ = [
    "EndpointPool",
    "RateGate",
    "SearchExecutor",
    "AiohttpTransport",
    "HttpResponse",
    "create_search_executor",
]
