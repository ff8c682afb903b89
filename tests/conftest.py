"""
Shared fixtures for the Taxi Manager client tests.

``FakeBackend`` is a small aiohttp application that mimics the token and
back-office endpoints of the real API closely enough to drive the full
request pipeline over real sockets.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from taxi_client.api_client import TaxiManagerAPIClient
from taxi_client.auth.token_storage import InMemoryCredentialStore
from taxi_shared.models import StorageKey

SEEN_AUTH_HEADER = 'X-Seen-Authorization'

INVALID_TOKEN_BODY = {
    'detail': 'Given token not valid for any token type',
    'code': 'token_not_valid',
}


class FakeBackend:
    """In-process stand-in for the Taxi Manager API."""

    def __init__(self):
        self.username = 'encargado1'
        self.password = 'secreto'
        self.user_id = 7
        self.user_role = 'encargado'
        self.fail_current_user = False

        self.valid_access = set()
        self.valid_refresh = {'refresh-1'}
        self.rotate_refresh = False
        self.reject_refresh = False
        self.refresh_gate: Optional[asyncio.Event] = None

        self.refresh_calls = 0
        self.refresh_bodies: List[Dict[str, Any]] = []
        self.seen: List[Tuple[str, str, Optional[str]]] = []

        # Hold 401 answers until this many have been produced
        self.hold_unauthorized = 0
        self._held = 0
        self._release: Optional[asyncio.Event] = None

        self._issued = 1
        self.base_url = ''

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post('/api/token/', self.obtain_pair)
        app.router.add_post('/api/token/refresh/', self.refresh)
        app.router.add_get('/api/usuarios/me/', self.current_user)
        app.router.add_get('/api/taxis/', self.taxis)
        app.router.add_get('/api/gastos/', self.list_gastos)
        app.router.add_post('/api/gastos/', self.create_record)
        app.router.add_get('/api/conceptos-gasto/', self.conceptos)
        app.router.add_get('/api/ingresos-guardia/', self.list_ingresos)
        app.router.add_post('/api/ingresos-guardia/', self.create_record)
        app.router.add_get('/api/always-401/', self.always_unauthorized)
        app.router.add_get('/api/server-error/', self.server_error)
        app.router.add_get('/api/bad-request/', self.bad_request)
        app.router.add_get('/api/slow/', self.slow)
        return app

    def issue_access(self) -> str:
        self._issued += 1
        token = f'access-{self._issued}'
        self.valid_access.add(token)
        return token

    # Token endpoints

    async def obtain_pair(self, request: web.Request) -> web.Response:
        body = await request.json()
        if body.get('username') != self.username or body.get('password') != self.password:
            return web.json_response(
                {'detail': 'No active account found with the given credentials'}, status=401
            )
        return web.json_response({'access': self.issue_access(), 'refresh': 'refresh-1'})

    async def refresh(self, request: web.Request) -> web.Response:
        self.refresh_calls += 1
        body = await request.json()
        self.refresh_bodies.append(body)

        if self.refresh_gate is not None:
            await self.refresh_gate.wait()

        if self.reject_refresh or body.get('refresh') not in self.valid_refresh:
            return web.json_response({'detail': 'Token is invalid or expired', 'code': 'token_not_valid'},
                                     status=401)

        payload = {'access': self.issue_access()}
        if self.rotate_refresh:
            rotated = f'refresh-{self._issued}'
            self.valid_refresh = {rotated}
            payload['refresh'] = rotated
        return web.json_response(payload)

    # Protected endpoints

    async def _authorize(self, request: web.Request) -> Optional[web.Response]:
        auth = request.headers.get('Authorization')
        self.seen.append((request.method, request.path, auth))

        token = auth[len('Bearer '):] if auth and auth.startswith('Bearer ') else None
        if token in self.valid_access:
            return None
        return await self._unauthorized()

    async def _unauthorized(self) -> web.Response:
        if self.hold_unauthorized:
            if self._release is None:
                self._release = asyncio.Event()
            self._held += 1
            if self._held >= self.hold_unauthorized:
                self._release.set()
            await self._release.wait()
        return web.json_response(INVALID_TOKEN_BODY, status=401)

    def _reply(self, request: web.Request, data: Any, status: int = 200) -> web.Response:
        return web.json_response(
            data,
            status=status,
            headers={SEEN_AUTH_HEADER: request.headers.get('Authorization', '')}
        )

    async def current_user(self, request: web.Request) -> web.Response:
        rejected = await self._authorize(request)
        if rejected:
            return rejected
        if self.fail_current_user:
            return web.json_response({'detail': 'Internal server error'}, status=500)
        return self._reply(request, {
            'id': self.user_id,
            'username': self.username,
            'email': 'encargado1@example.com',
            'first_name': 'Ana',
            'last_name': 'Pérez',
            'rol': self.user_role,
        })

    async def taxis(self, request: web.Request) -> web.Response:
        rejected = await self._authorize(request)
        if rejected:
            return rejected
        return self._reply(request, [
            {'id': 1, 'matricula': '1234-ABC', 'modelo': 'Toyota Prius'},
            {'id': 2, 'matricula': '5678-DEF', 'modelo': 'Skoda Octavia'},
        ])

    async def list_gastos(self, request: web.Request) -> web.Response:
        rejected = await self._authorize(request)
        if rejected:
            return rejected
        return self._reply(request, [{'id': 10, 'importe': '45.50', 'concepto': 1}])

    async def conceptos(self, request: web.Request) -> web.Response:
        rejected = await self._authorize(request)
        if rejected:
            return rejected
        return self._reply(request, [{'id': 1, 'nombre': 'Combustible'}])

    async def list_ingresos(self, request: web.Request) -> web.Response:
        rejected = await self._authorize(request)
        if rejected:
            return rejected
        return self._reply(request, [{'id': 3, 'importe': '120.00', 'taxi': 1}])

    async def create_record(self, request: web.Request) -> web.Response:
        rejected = await self._authorize(request)
        if rejected:
            return rejected
        body = await request.json()
        return self._reply(request, {**body, 'id': 99}, status=201)

    async def always_unauthorized(self, request: web.Request) -> web.Response:
        self.seen.append((request.method, request.path, request.headers.get('Authorization')))
        return web.json_response(INVALID_TOKEN_BODY, status=401)

    async def server_error(self, request: web.Request) -> web.Response:
        rejected = await self._authorize(request)
        if rejected:
            return rejected
        return web.json_response({'detail': 'Internal server error'}, status=500)

    async def bad_request(self, request: web.Request) -> web.Response:
        rejected = await self._authorize(request)
        if rejected:
            return rejected
        return web.json_response({'error': 'El importe es obligatorio'}, status=400)

    async def slow(self, request: web.Request) -> web.Response:
        await asyncio.sleep(2)
        return web.json_response({})


def seeded_store(access_token: Optional[str] = 'stale-access',
                 refresh_token: Optional[str] = 'refresh-1') -> InMemoryCredentialStore:
    """Store holding a session whose access token the backend no longer accepts."""
    initial = {
        StorageKey.USER_ID.value: '7',
        StorageKey.USER_ROLE.value: 'encargado',
    }
    if access_token:
        initial[StorageKey.ACCESS_TOKEN.value] = access_token
    if refresh_token:
        initial[StorageKey.REFRESH_TOKEN.value] = refresh_token
    return InMemoryCredentialStore(initial)


@pytest_asyncio.fixture
async def backend():
    fake = FakeBackend()
    server = TestServer(fake.make_app())
    await server.start_server()
    fake.base_url = str(server.make_url('/api/'))
    yield fake
    await server.close()


@pytest.fixture
def memory_store():
    return seeded_store()


@pytest_asyncio.fixture
async def api_client(backend, memory_store):
    client = TaxiManagerAPIClient(backend.base_url, timeout=5, credential_store=memory_store)
    yield client
    await client.close()
