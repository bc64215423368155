"""
HTTP API for frag-probe.

Serves the airdrop and registry endpoints together with the dashboard
operations of the probe session.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import ProbeConfig
from .exceptions import FundingError, WalletNotReadyError
from .funding import FundingService
from .leader import classify_gateways, resolve_leader
from .registry_store import RegistryStore
from .session import ProbeSession
from .utils.ledger_client import LedgerClient
from .utils.registry_client import RegistryClient

logger = logging.getLogger(__name__)


class AutoSendReq(BaseModel):
    enabled: bool


class RpcUpdateReq(BaseModel):
    url: str


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _leader_view(registry_store: RegistryStore, current_block: int) -> dict:
    data = registry_store.get_data()
    resolution = resolve_leader(data.future_gateways, current_block)
    return {
        "current_block": current_block,
        **resolution.to_dict(),
        "gateways": [g.to_dict() for g in classify_gateways(data.gateways, resolution)],
    }


r_api = APIRouter(prefix="/api")


@r_api.post("/airdrop", tags=["Funding"])
async def airdrop(request: Request):
    try:
        payload = await request.json()
    except ValueError:
        payload = {}

    address = payload.get("address") if isinstance(payload, dict) else None
    if not address:
        return _error(400, "Address is required")

    funding: Optional[FundingService] = request.app.state.funding
    if funding is None:
        return _error(500, "Airdrop failed: funding is not configured")

    try:
        tx_hash = await funding.airdrop(address)
    except ValueError as e:
        return _error(400, str(e))
    except FundingError as e:
        return _error(500, str(e))

    return {"txHash": tx_hash}


@r_api.get("/registry", tags=["Registry"])
async def registry(request: Request):
    logger.debug("Serving registry data")
    return request.app.state.registry.get_data().to_dict()


@r_api.get("/leader", tags=["Registry"])
async def leader(request: Request):
    session: ProbeSession = request.app.state.session
    return _leader_view(request.app.state.registry, session.current_block)


@r_api.get("/dashboard", tags=["Probe"])
async def dashboard(request: Request):
    session: ProbeSession = request.app.state.session
    return {
        **session.snapshot(),
        "leader": _leader_view(request.app.state.registry, session.current_block),
    }


@r_api.post("/wallet", tags=["Probe"])
async def create_wallet(request: Request):
    session: ProbeSession = request.app.state.session
    try:
        address = await session.create_wallet()
    except ValueError as e:
        return _error(409, str(e))
    except FundingError as e:
        return _error(502, str(e))
    return {"address": address, "next_sequence_number": session.next_nonce}


@r_api.post("/send", tags=["Probe"])
async def send(request: Request):
    session: ProbeSession = request.app.state.session
    try:
        record = await session.send()
    except WalletNotReadyError as e:
        return _error(409, str(e))
    except Exception as e:
        logger.error(f"Send failed: {e}")
        return _error(502, f"Send failed: {e}")
    return record.to_dict()


@r_api.post("/auto-send", tags=["Probe"])
async def auto_send(req: AutoSendReq, request: Request):
    session: ProbeSession = request.app.state.session
    try:
        session.set_auto_send(req.enabled)
    except WalletNotReadyError as e:
        return _error(409, str(e))
    return {"enabled": session.auto_send.enabled}


@r_api.post("/rpc", tags=["Probe"])
async def update_rpc(req: RpcUpdateReq, request: Request):
    session: ProbeSession = request.app.state.session
    try:
        await session.set_rpc_url(req.url)
    except ValueError as e:
        return _error(400, str(e))
    return {"rpc_url": session.rpc_url, "chain_id": session.chain_id}


def create_app(
    config: ProbeConfig,
    registry_store: Optional[RegistryStore] = None,
    session: Optional[ProbeSession] = None,
    funding: Optional[FundingService] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Components not passed in are constructed from ``config``. The lifespan
    starts the registry store and the session and stops them on shutdown.
    """
    if registry_store is None:
        registry_store = RegistryStore(
            client=RegistryClient(config.registry.rpc_url, timeout=config.probe.request_timeout),
            poll_interval=config.registry.poll_interval,
            ping_interval=config.registry.ping_interval,
            lookahead_slots=config.registry.lookahead_slots,
            ping_samples=config.registry.ping_samples,
        )

    if session is None:
        session = ProbeSession(config)

    if funding is None and config.funding.private_key:
        funding = FundingService(
            LedgerClient.from_key(config.funding.rpc_url, config.funding.private_key),
            amount_wei=config.funding.amount_wei,
        )
    elif funding is None:
        logger.warning("FUNDING_PRIVATE_KEY is not set, airdrops are disabled")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        registry_store.start()
        await session.start()
        try:
            yield
        finally:
            logger.info("Shutting down...")
            await session.stop()
            await registry_store.stop()
            logger.info("Shutdown complete")

    app = FastAPI(title="frag-probe", lifespan=lifespan)
    app.state.config = config
    app.state.registry = registry_store
    app.state.session = session
    app.state.funding = funding

    @app.get("/health")
    def health():
        return {"status": "ok", "registry": registry_store.get_status()}

    app.include_router(r_api)
    return app
