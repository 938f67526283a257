"""
app.py — FastAPI server.
Exposes REST + WebSocket endpoints for the Catalyst 9K → Meraki config migration.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config_fetcher import RunningConfigFetcher
from config_parser import parse, summarize
from errors import MigrationError, ParseError, ValidationError, DeviceConnectionError
from meraki_api import MerakiDashboardClient, MerakiAPIError, DEFAULT_REGION
from migration_session import MigrationSession
from models import (
    ParseRequest, SourceDeviceRequest, DestinationRequest, ApplyFlags, SessionStatus,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s — %(message)s")
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# In-memory session store (one entry per browser tab / CLI run)
sessions: dict[str, MigrationSession] = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Catalyst → Meraki Migration API started")
    yield
    for session in list(sessions.values()):
        await session.close()
    logger.info("Shutting down")


app = FastAPI(
    title="Catalyst → Meraki Migration API",
    version=VERSION,
    description=(
        "Parses Catalyst 9K IOS-XE running-configs and migrates VLAN ports, "
        "RADIUS/802.1X and ACLs into a Meraki Dashboard network."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # Restrict to your frontend origin in production
    allow_methods=["*"],
    allow_headers=["*"],
)


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, MerakiAPIError):
        return HTTPException(status_code=e.status_code, detail=e.message)
    if isinstance(e, DeviceConnectionError):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, ValidationError):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def _session(session_id: str) -> MigrationSession:
    if session_id not in sessions:
        raise HTTPException(status_code=404, detail="Session not found")
    return sessions[session_id]


# ------------------------------------------------------------------ #
#  Health / info                                                       #
# ------------------------------------------------------------------ #

@app.get("/health", tags=["System"])
async def health():
    return {"status": "ok", "version": VERSION}


# ------------------------------------------------------------------ #
#  Stateless parsing                                                   #
# ------------------------------------------------------------------ #

@app.post("/api/parse", tags=["Config"])
async def parse_config(req: ParseRequest):
    """Parse raw IOS-XE config text and return the structured result plus review counts."""
    try:
        parsed = parse(req.config_text)
    except ParseError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"parsed": parsed.model_dump(), "summary": summarize(parsed)}


@app.post("/api/fetch-config", tags=["Config"])
async def fetch_config(req: SourceDeviceRequest):
    """SSH into the switch, pull 'show running-config' and parse it."""
    try:
        raw = await RunningConfigFetcher(req).fetch()
        parsed = parse(raw)
    except MigrationError as e:
        raise _http_error(e)
    return {"parsed": parsed.model_dump(), "summary": summarize(parsed)}


# ------------------------------------------------------------------ #
#  Meraki API utility endpoints                                        #
# ------------------------------------------------------------------ #

def _client(api_key: str, region: str) -> MerakiDashboardClient:
    try:
        return MerakiDashboardClient(api_key, region)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/meraki/verify", tags=["Meraki API"])
async def verify_meraki_key(api_key: str, org_id: str, region: str = DEFAULT_REGION):
    """Verify a Meraki API key has access to the given organization."""
    ok, name = await _client(api_key, region).verify_api_key(org_id)
    if ok:
        return {"valid": True, "org_name": name}
    return JSONResponse(status_code=401, content={"valid": False, "error": name})


@app.get("/api/meraki/organizations", tags=["Meraki API"])
async def list_organizations(api_key: str, region: str = DEFAULT_REGION):
    try:
        orgs = await _client(api_key, region).get_organizations()
        return [{"id": o["id"], "name": o.get("name", "")} for o in orgs]
    except MerakiAPIError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@app.get("/api/meraki/networks", tags=["Meraki API"])
async def list_networks(api_key: str, org_id: str, region: str = DEFAULT_REGION):
    """List all networks in a Meraki organization — useful for selecting a target network_id."""
    try:
        networks = await _client(api_key, region).list_networks(org_id)
        return [{"id": n["id"], "name": n["name"], "type": n.get("productTypes", [])} for n in networks]
    except MerakiAPIError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@app.get("/api/meraki/devices", tags=["Meraki API"])
async def list_network_devices(api_key: str, network_id: str, region: str = DEFAULT_REGION):
    try:
        devices = await _client(api_key, region).get_network_devices(network_id)
        return [
            {"serial": d.get("serial"), "name": d.get("name"), "model": d.get("model", "")}
            for d in devices
        ]
    except MerakiAPIError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# ------------------------------------------------------------------ #
#  Migration sessions                                                  #
# ------------------------------------------------------------------ #

@app.post("/api/sessions", response_model=SessionStatus, tags=["Sessions"])
async def create_session():
    session = MigrationSession()
    sessions[session.session_id] = session
    return session.status()


@app.get("/api/sessions", tags=["Sessions"])
async def list_sessions():
    return [
        {"session_id": s.session_id, "phase": s.phase,
         "hostname": s.parsed.hostname if s.parsed else None, "busy": s.busy}
        for s in sessions.values()
    ]


@app.get("/api/sessions/{session_id}", response_model=SessionStatus, tags=["Sessions"])
async def get_session(session_id: str):
    return _session(session_id).status()


@app.delete("/api/sessions/{session_id}", tags=["Sessions"])
async def delete_session(session_id: str):
    session = _session(session_id)
    await session.close()
    del sessions[session_id]
    return {"deleted": session_id}


@app.post("/api/sessions/{session_id}/upload", tags=["Sessions"])
async def session_upload(session_id: str, req: ParseRequest):
    session = _session(session_id)
    try:
        parsed = session.upload(req.config_text)
    except MigrationError as e:
        raise _http_error(e)
    return {"parsed": parsed.model_dump(), "summary": summarize(parsed)}


@app.post("/api/sessions/{session_id}/fetch-config", tags=["Sessions"])
async def session_fetch_config(session_id: str, req: SourceDeviceRequest):
    session = _session(session_id)
    try:
        parsed = await session.upload_from_device(req)
    except MigrationError as e:
        raise _http_error(e)
    return {"parsed": parsed.model_dump(), "summary": summarize(parsed)}


@app.post("/api/sessions/{session_id}/review", tags=["Sessions"])
async def session_review(session_id: str, flags: Optional[ApplyFlags] = None):
    session = _session(session_id)
    try:
        summary = session.review(flags)
    except MigrationError as e:
        raise _http_error(e)
    return {"summary": summary, "flags": session.flags.model_dump()}


@app.post("/api/sessions/{session_id}/destination", response_model=SessionStatus, tags=["Sessions"])
async def session_destination(session_id: str, req: DestinationRequest):
    session = _session(session_id)
    try:
        await session.select_destination(req.credentials, req.organization_id, req.network_id)
    except (MigrationError, MerakiAPIError) as e:
        raise _http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.status()


@app.post("/api/sessions/{session_id}/skip-claim", response_model=SessionStatus, tags=["Sessions"])
async def session_skip_claim(session_id: str):
    session = _session(session_id)
    try:
        session.skip_claim()
    except MigrationError as e:
        raise _http_error(e)
    return session.status()


@app.post("/api/sessions/{session_id}/stop", tags=["Sessions"])
async def session_stop(session_id: str):
    session = _session(session_id)
    session.stop()
    return {"stopping": session.busy}


@app.post("/api/sessions/{session_id}/reset", response_model=SessionStatus, tags=["Sessions"])
async def session_reset(session_id: str):
    session = _session(session_id)
    await session.reset()
    return session.status()


@app.get("/api/sessions/{session_id}/results", tags=["Sessions"])
async def session_results(session_id: str):
    session = _session(session_id)
    if session.results is None:
        raise HTTPException(status_code=404, detail="No apply run yet")
    return {**session.results.summary(), "was_stopped": session.results.was_stopped, "log": session.results.log}


# ------------------------------------------------------------------ #
#  Streaming endpoints                                                 #
# ------------------------------------------------------------------ #

async def _listen_for_stop(websocket: WebSocket, session: MigrationSession):
    """Reads client messages while a run streams; {"action": "stop"} halts it."""
    try:
        while True:
            msg = await websocket.receive_json()
            if msg.get("action") == "stop":
                logger.info("[SESSION %s] Stop requested by client", session.session_id[:8])
                session.stop()
    except WebSocketDisconnect:
        session.stop()


async def _stream(websocket: WebSocket, session: MigrationSession, events):
    listener = asyncio.create_task(_listen_for_stop(websocket, session))
    try:
        async for event in events:
            await websocket.send_json(event)
    finally:
        listener.cancel()
    await websocket.send_json({"type": "done", "status": session.status().model_dump()})


@app.websocket("/ws/sessions/{session_id}/claim")
async def websocket_claim(websocket: WebSocket, session_id: str):
    """
    WebSocket — claim Cloud IDs into the session's network and stream progress.

    Client sends (JSON):
        { "cloud_ids": ["Q2XX-XXXX-XXXX", ...] }
    then optionally { "action": "stop" } to stop polling.

    Server streams:
        { "type": "claim",  "step": "polling", "detail": "...", "status": "muted" }
        { "type": "result", "claimed": [...], "timed_out": false, "stopped": false, "error": null }
        { "type": "done",   "status": { ...SessionStatus } }
        { "type": "error",  "msg": "..." }
    """
    await websocket.accept()
    try:
        session = sessions.get(session_id)
        if session is None:
            await websocket.send_json({"type": "error", "msg": "Session not found"})
            return
        body = await websocket.receive_json()
        await _stream(websocket, session, session.stream_claim(body.get("cloud_ids", [])))
    except WebSocketDisconnect:
        pass
    except Exception as e:
        try:
            await websocket.send_json({"type": "error", "msg": str(e)})
        except Exception:
            pass
    finally:
        try:
            await websocket.close()
        except Exception:
            pass


@app.websocket("/ws/sessions/{session_id}/apply")
async def websocket_apply(websocket: WebSocket, session_id: str):
    """
    WebSocket — push the parsed config to the session's network and stream the log.

    Client sends (JSON):
        { "action": "start" }   or   { "action": "resume" }
    then optionally { "action": "stop" } while the run is streaming.

    Server streams:
        { "type": "log",     "msg": "...", "color": "#00e676", "time": "12:00:01" }
        { "type": "summary", "ports_pushed": 0, "ports_failed": 0, "policies_created": 0,
                             "acl_rules_pushed": 0, "was_stopped": false, "log": [...] }
        { "type": "done",    "status": { ...SessionStatus } }
        { "type": "error",   "msg": "..." }
    """
    await websocket.accept()
    try:
        session = sessions.get(session_id)
        if session is None:
            await websocket.send_json({"type": "error", "msg": "Session not found"})
            return
        body = await websocket.receive_json()
        events = session.resume() if body.get("action") == "resume" else session.stream_apply()
        await _stream(websocket, session, events)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        try:
            await websocket.send_json({"type": "error", "msg": str(e)})
        except Exception:
            pass
    finally:
        try:
            await websocket.close()
        except Exception:
            pass
