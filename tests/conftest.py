from collections.abc import AsyncGenerator, Callable

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from app.core.config import settings

# Override settings for tests
settings.fernet_key = "KxJCocbnA3KD20pkgSN3uUZybasKP1X9lAJDX4oLxoQ="  # test-only Fernet key
settings.app_env = "development"
settings.redis_url = ""
settings.http_retry_delay_seconds = 0
settings.stream_chunk_delay_seconds = 0

from app.core.dependencies import (  # noqa: E402
    GatewayServices,
    get_context_builder,
    get_provider_source,
    get_services,
    get_turn_sink,
)
from app.core.encryption import CredentialVault, reset_vault  # noqa: E402
from app.core.rate_limit import limiter  # noqa: E402
from app.gateway.catalog import InMemoryTTLCache, ModelCatalog  # noqa: E402
from app.gateway.context import ContextBuilder, InMemoryTurnLog  # noqa: E402
from app.gateway.gateway import ProviderGateway  # noqa: E402
from app.gateway.rate_limiter import InMemoryWindowStore, SlidingWindowRateLimiter  # noqa: E402
from app.gateway.registry import ProviderRegistry  # noqa: E402
from app.gateway.streaming import StreamingRelay  # noqa: E402
from app.gateway.transport import HttpTransport, RetryPolicy  # noqa: E402
from app.gateway.types import ProviderConfig  # noqa: E402
from app.main import app  # noqa: E402

reset_vault()
limiter.enabled = False

TEST_FERNET_KEY = settings.fernet_key


async def _no_sleep(_: float) -> None:
    return None


class VendorStub:
    """Programmable stand-in for every vendor API, served via httpx.MockTransport.

    ``routes`` maps a URL substring to a handler; the first match answers.
    Every request is recorded in ``calls``.
    """

    def __init__(self):
        self.routes: list[tuple[str, Callable[[httpx.Request], httpx.Response]]] = []
        self.calls: list[httpx.Request] = []

    def on(self, url_part: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes.insert(0, (url_part, handler))

    def json(self, url_part: str, payload, status_code: int = 200) -> None:
        self.on(url_part, lambda request: httpx.Response(status_code, json=payload))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        for url_part, handler in self.routes:
            if url_part in str(request.url):
                return handler(request)
        raise AssertionError(f"Unexpected vendor call: {request.method} {request.url}")

    def calls_to(self, url_part: str) -> list[httpx.Request]:
        return [c for c in self.calls if url_part in str(c.url)]


class InMemoryProviderSource:
    def __init__(self):
        self.configs: dict[str, ProviderConfig] = {}

    async def get(self, provider_id: str) -> ProviderConfig | None:
        return self.configs.get(str(provider_id))


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(TEST_FERNET_KEY)


@pytest.fixture
def vendor() -> VendorStub:
    return VendorStub()


@pytest.fixture
def transport(vendor: VendorStub) -> HttpTransport:
    return HttpTransport(
        RetryPolicy(max_attempts=3, backoff_seconds=0),
        transport=httpx.MockTransport(vendor),
        sleep=_no_sleep,
    )


@pytest.fixture
def registry(vault: CredentialVault, transport: HttpTransport) -> ProviderRegistry:
    return ProviderRegistry(vault, transport)


@pytest.fixture
def relay() -> StreamingRelay:
    return StreamingRelay(chunk_size=10, chunk_delay=0, sleep=_no_sleep)


@pytest.fixture
def gateway(registry: ProviderRegistry, relay: StreamingRelay) -> ProviderGateway:
    return ProviderGateway(registry, relay)


@pytest.fixture
def make_config(vault: CredentialVault) -> Callable[..., ProviderConfig]:
    def _make(provider_type: str = "openai", api_key: str = "sk-test-key-1234567890", **kwargs) -> ProviderConfig:
        return ProviderConfig(provider_type=provider_type, encrypted_key=vault.encrypt(api_key), **kwargs)

    return _make


@pytest.fixture
def turn_log() -> InMemoryTurnLog:
    return InMemoryTurnLog()


@pytest.fixture
def provider_source() -> InMemoryProviderSource:
    return InMemoryProviderSource()


@pytest.fixture
def services(registry: ProviderRegistry, gateway: ProviderGateway) -> GatewayServices:
    return GatewayServices(
        registry=registry,
        gateway=gateway,
        rate_limiter=SlidingWindowRateLimiter(limit=30, window_seconds=60, store=InMemoryWindowStore()),
        catalog=ModelCatalog(registry, InMemoryTTLCache(), ttl_seconds=3600),
    )


@pytest.fixture
async def client(
    services: GatewayServices,
    turn_log: InMemoryTurnLog,
    provider_source: InMemoryProviderSource,
) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_services] = lambda: services
    app.dependency_overrides[get_provider_source] = lambda: provider_source
    app.dependency_overrides[get_context_builder] = lambda: ContextBuilder(turn_log, default_max_turns=10)
    app.dependency_overrides[get_turn_sink] = lambda: turn_log

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
