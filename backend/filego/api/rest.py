"""
REST API for a FileGo Node

Design Decision: API Framework
==============================

Decision: FastAPI
- Native async support (the overlay and chunk store are async)
- Pydantic validation of request bodies
- Automatic OpenAPI documentation

API Design:
- Thin layer: every endpoint is one call into the node's components
- Core error kinds map onto HTTP status codes in one exception handler
"""

import logging
import uuid
from pathlib import Path
from typing import List, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from ..exceptions import (
    ConflictError, ConnectionLostError, FileGoError, InvalidInputError,
    NotFoundError, ProtocolError
)
from ..file import ChunkInfo

logger = logging.getLogger(__name__)

STATUS_CODES = {
    NotFoundError: 404,
    ConflictError: 409,
    InvalidInputError: 400,
    ProtocolError: 502,
    ConnectionLostError: 502,
}


# === Pydantic Models ===

class RegisterNodeRequest(BaseModel):
    """Register or update a node. An id is generated if omitted."""
    id: Optional[str] = None
    address: str
    storageMax: int


class StatusRequest(BaseModel):
    status: str


class StorageRequest(BaseModel):
    storageUsed: int


class PlacementRequest(BaseModel):
    size: int
    replicas: int = 3


class ConnectRequest(BaseModel):
    address: str


class ChunkModel(BaseModel):
    id: str
    index: int
    size: int = 0
    fileId: str = ""
    location: str = ""


class SplitRequest(BaseModel):
    file_path: str
    chunk_size: Optional[int] = None


class ReassembleRequest(BaseModel):
    """Chunks default to the list recorded when the file was split."""
    file_id: str
    output_path: str
    chunks: Optional[List[ChunkModel]] = None


class PathRequest(BaseModel):
    path: str


class MoveRequest(BaseModel):
    src: str
    dst: str


class ReplicateRequest(BaseModel):
    path: str
    replicas: int


# === API Creation ===

def create_app(node) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        node: FileGoNode instance to control
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("API server starting...")
        yield
        logger.info("API server stopping...")

    app = FastAPI(
        title="FileGo API",
        description="Control plane for a FileGo storage node",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Origin", "Content-Type", "Authorization"],
    )

    @app.exception_handler(FileGoError)
    async def filego_error_handler(request: Request, exc: FileGoError):
        status = STATUS_CODES.get(type(exc), 500)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status, content={"error": str(exc)})

    # === General ===

    @app.get("/", tags=["General"])
    async def root():
        return {
            "name": "FileGo Decentralized FS",
            "version": "1.0.0",
            "status": "running" if node.is_running else "not running",
        }

    @app.get("/api/status", tags=["General"])
    async def system_status():
        """Aggregate node counts and storage."""
        return node.registry.status().to_dict()

    @app.get("/api/stats", tags=["General"])
    async def stats():
        return node.get_full_stats()

    # === Nodes ===

    @app.get("/api/nodes", tags=["Nodes"])
    async def list_nodes():
        return [n.to_dict() for n in node.registry.list()]

    @app.post("/api/nodes", tags=["Nodes"])
    async def register_node(request: RegisterNodeRequest):
        node_id = request.id or str(uuid.uuid4())
        registered = node.registry.register(node_id, request.address, request.storageMax)
        return registered.to_dict()

    @app.get("/api/nodes/{node_id}", tags=["Nodes"])
    async def get_node(node_id: str):
        return node.registry.get(node_id).to_dict()

    @app.put("/api/nodes/{node_id}/status", tags=["Nodes"])
    async def update_node_status(node_id: str, request: StatusRequest):
        return node.registry.set_status(node_id, request.status).to_dict()

    @app.put("/api/nodes/{node_id}/storage", tags=["Nodes"])
    async def update_node_storage(node_id: str, request: StorageRequest):
        return node.registry.set_storage_used(node_id, request.storageUsed).to_dict()

    @app.delete("/api/nodes/{node_id}", tags=["Nodes"])
    async def remove_node(node_id: str):
        node.registry.remove(node_id)
        return {"message": "Node removed successfully"}

    @app.post("/api/nodes/{node_id}/heartbeat", tags=["Nodes"])
    async def heartbeat_node(node_id: str):
        node.registry.heartbeat(node_id)
        return {"message": "Heartbeat received"}

    @app.post("/api/placement", tags=["Nodes"])
    async def select_nodes(request: PlacementRequest):
        """Rank nodes for a replication request (advisory, nothing reserved)."""
        return {"nodes": node.placement.select(request.size, request.replicas)}

    # === P2P ===

    @app.get("/api/p2p/info", tags=["P2P"])
    async def p2p_info():
        peers = node.overlay.list_peers()
        return {
            "nodeId": node.overlay.node_id,
            "port": node.overlay.port,
            "peerCount": len(peers),
            "isConnected": any(p.is_active for p in peers),
            "peers": [p.to_dict() for p in peers],
        }

    @app.get("/api/p2p/peers", tags=["P2P"])
    async def list_peers():
        return [p.to_dict() for p in node.overlay.list_peers()]

    @app.post("/api/p2p/peers", tags=["P2P"])
    async def connect_peer(request: ConnectRequest):
        peer = await node.overlay.connect(request.address)
        return {"status": "connected", **peer.to_dict()}

    @app.delete("/api/p2p/peers/{peer_id}", tags=["P2P"])
    async def disconnect_peer(peer_id: str):
        await node.overlay.disconnect(peer_id)
        return {"status": "disconnected"}

    @app.post("/api/p2p/discover", tags=["P2P"])
    async def discover():
        return {"asked": node.overlay.discover()}

    # === Chunks ===

    @app.post("/api/chunks/split", tags=["Chunks"])
    async def split_file(request: SplitRequest):
        file_path = Path(request.file_path).resolve()
        logger.info(f"Split request for: {file_path}")
        file_id, chunks = await node.chunks.split(file_path, request.chunk_size)
        return {"fileId": file_id, "chunks": [c.to_dict() for c in chunks]}

    @app.post("/api/chunks/reassemble", tags=["Chunks"])
    async def reassemble_file(request: ReassembleRequest):
        if request.chunks is None:
            chunks = await node.chunks.list_chunks(request.file_id)
        else:
            chunks = [ChunkInfo.from_dict(c.model_dump()) for c in request.chunks]
        output = await node.chunks.reassemble(request.file_id, chunks, request.output_path)
        return {"fileId": request.file_id, "outputPath": str(output)}

    @app.get("/api/chunks/{file_id}", tags=["Chunks"])
    async def list_file_chunks(file_id: str):
        return [c.to_dict() for c in await node.chunks.list_chunks(file_id)]

    @app.get("/api/chunks/{file_id}/{chunk_id}", tags=["Chunks"])
    async def get_chunk(file_id: str, chunk_id: str):
        data = await node.chunks.get(file_id, chunk_id)
        return Response(content=data, media_type="application/octet-stream")

    @app.put("/api/chunks/{file_id}/{chunk_id}", tags=["Chunks"])
    async def put_chunk(file_id: str, chunk_id: str, request: Request):
        data = await request.body()
        await node.chunks.put(file_id, chunk_id, data)
        return {"fileId": file_id, "chunkId": chunk_id, "size": len(data)}

    # === Local files ===

    @app.get("/api/files", tags=["Files"])
    async def list_files(path: str = ""):
        return [e.to_dict() for e in node.files.list(path)]

    @app.post("/api/files/mkdir", tags=["Files"])
    async def create_directory(request: PathRequest):
        return node.files.mkdir(request.path).to_dict()

    @app.post("/api/files/move", tags=["Files"])
    async def move_file(request: MoveRequest):
        return node.files.move(request.src, request.dst).to_dict()

    @app.delete("/api/files", tags=["Files"])
    async def delete_file(path: str):
        node.files.delete(path)
        return {"message": "Deleted successfully"}

    @app.post("/api/files/upload", tags=["Files"])
    async def upload_file(path: str, request: Request):
        """Store the raw request body at path."""
        data = await request.body()
        return (await node.files.upload(path, data)).to_dict()

    @app.get("/api/files/download", tags=["Files"])
    async def download_file(path: str):
        data = await node.files.download(path)
        return Response(
            content=data,
            media_type="application/octet-stream",
            headers={"Content-Disposition": f'attachment; filename="{Path(path).name}"'},
        )

    @app.put("/api/files/replicate", tags=["Files"])
    async def set_replication(request: ReplicateRequest):
        """Record a replication factor and suggest nodes to hold the copies."""
        entry = node.files.set_replicas(request.path, request.replicas)
        return {
            "message": "Replication factor set successfully",
            "file": entry.to_dict(),
            "nodes": node.placement.select(entry.size, request.replicas),
        }

    return app


async def run_api_server(node, host: str = "0.0.0.0", port: int = 8080):
    """
    Run the API server.

    Args:
        node: FileGoNode instance
        host: Host to bind to
        port: Port to listen on
    """
    import uvicorn

    app = create_app(node)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    await server.serve()
