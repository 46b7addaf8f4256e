"""
File mirroring endpoints.

Both endpoints take the transmitter's JSON body ``{"path", "content"}``,
optionally gzip-compressed:
- POST /   - write ``content`` to ``path``, creating parent directories
- DELETE / - remove the file, or the whole tree for a directory
"""

import asyncio
import shutil
import zlib
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from loguru import logger
from pydantic import ValidationError

from courier.api.auth import verify_key
from courier.models.schemas import FilePayload
from courier.utils.helpers import format_bytes, rebase_path

router = APIRouter(dependencies=[Depends(verify_key)])


def _gunzip(body: bytes, limit: int) -> bytes:
    decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
    data = decompressor.decompress(body, limit + 1)
    if len(data) > limit or decompressor.unconsumed_tail:
        raise HTTPException(status_code=413, detail="Payload too large")
    data += decompressor.flush()
    if not decompressor.eof:
        raise zlib.error("incomplete gzip stream")
    return data


async def read_payload(request: Request) -> FilePayload:
    """Read, decompress and validate the request body."""
    limit = request.app.state.settings.receiver_max_body

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise HTTPException(status_code=413, detail="Payload too large")

    data = bytes(body)
    if request.headers.get("Content-Encoding", "").lower() == "gzip":
        try:
            data = _gunzip(data, limit)
        except zlib.error as e:
            raise HTTPException(status_code=400, detail=f"Invalid request: {e}") from e

    try:
        return FilePayload.model_validate_json(data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid request: {e}") from e


def _target(request: Request, payload: FilePayload) -> Path:
    try:
        return rebase_path(payload.path, request.app.state.settings.receiver_root)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid request: {e}") from e


def save_file(path: Path, content: str) -> str:
    """Write ``content`` to ``path``, creating parent directories."""
    parent = path.parent
    if parent == path:
        raise OSError("Could not determine parent directory from path")

    parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content.encode("utf-8"))
    return "File saved successfully"


def remove_path(path: Path) -> str:
    """Remove a file, or a directory and its contents."""
    if not path.exists() and not path.is_symlink():
        raise FileNotFoundError(f"Error getting metadata: no such file or directory: {path}")

    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()
    return "Removed file"


@router.post("/", response_class=PlainTextResponse)
async def save(request: Request, payload: FilePayload = Depends(read_payload)):
    """Mirror a created or modified file."""
    target = _target(request, payload)
    try:
        message = await asyncio.to_thread(save_file, target, payload.content)
    except OSError as e:
        logger.error(f"Error saving file {target}: {e}")
        return PlainTextResponse(f"Error saving file: {e}", status_code=500)

    logger.info(f"Saved {target} ({format_bytes(len(payload.content))})")
    return message


@router.delete("/", response_class=PlainTextResponse)
async def delete(request: Request, payload: FilePayload = Depends(read_payload)):
    """Mirror a removal."""
    target = _target(request, payload)
    try:
        message = await asyncio.to_thread(remove_path, target)
    except OSError as e:
        logger.error(f"Error removing {target}: {e}")
        return PlainTextResponse(str(e), status_code=500)

    logger.info(f"Removed {target}")
    return message
