"""Phone Router - Store and retrieve encrypted phone numbers

Endpoints:
- POST /phone: Encrypt and persist a phone number (201)
- GET /phone/{record_id}: Decrypt and return a stored phone number (200)

Service calls block on KMS and the database, so they run in the loop executor
under the per-request deadline from settings.
"""

import asyncio
import contextvars
import functools
import time
from typing import Any, Callable

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, field_validator

from phonevault.errors import PhoneVaultError, RequestTimeout
from phonevault.records.service import RecordService
from phonevault.security.envelope import MAX_PLAINTEXT_BYTES

router = APIRouter()
logger = structlog.get_logger()


class PhoneNumberIn(BaseModel):
    phone_number: str = Field(..., min_length=1, max_length=MAX_PLAINTEXT_BYTES)

    @field_validator("phone_number")
    @classmethod
    def fits_kms_plaintext(cls, value: str) -> str:
        if len(value.encode("utf-8")) > MAX_PLAINTEXT_BYTES:
            raise ValueError(f"must be at most {MAX_PLAINTEXT_BYTES} bytes of UTF-8")
        return value


class EncryptedRecordOut(BaseModel):
    id: str
    encrypted_data: str
    created_at: str
    updated_at: str


class PhoneNumberOut(BaseModel):
    id: str
    phone_number: str
    created_at: str
    updated_at: str


def get_record_service(request: Request) -> RecordService:
    service = request.app.state.record_service
    if service is None:
        raise PhoneVaultError("Service not initialized", status_code=503)
    return service


def request_deadline(request: Request) -> float:
    return time.monotonic() + request.app.state.request_timeout_seconds


async def run_with_deadline(deadline: float, func: Callable, *args, **kwargs) -> Any:
    """Run a blocking call in the loop executor until `deadline` (monotonic)

    On timeout the caller gets RequestTimeout right away. The worker thread is
    left to finish under the KMS and database client timeouts, so calls that
    write must check the same deadline before committing.
    """
    timeout = max(deadline - time.monotonic(), 0.0)
    loop = asyncio.get_running_loop()
    call = functools.partial(contextvars.copy_context().run, func, *args, **kwargs)
    try:
        return await asyncio.wait_for(loop.run_in_executor(None, call), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error("Request deadline exceeded", timeout_seconds=timeout)
        raise RequestTimeout("Request timed out", details=f"exceeded {timeout:.3f}s")


@router.post("", status_code=201, response_model=EncryptedRecordOut)
async def create_phone_number(
    payload: PhoneNumberIn,
    request: Request,
    service: RecordService = Depends(get_record_service),
):
    """Encrypt and save a phone number

    Returns:
        The created record with its encrypted payload
    """
    deadline = request_deadline(request)
    record = await run_with_deadline(deadline, service.submit, payload.phone_number, deadline)
    logger.info("Phone number stored", record_id=record.id)
    return record.to_dict()


@router.get("/{record_id}", response_model=PhoneNumberOut)
async def get_phone_number(
    record_id: str,
    request: Request,
    service: RecordService = Depends(get_record_service),
):
    """Retrieve the decrypted phone number for a record"""
    result = await run_with_deadline(request_deadline(request), service.fetch, record_id)
    return result.to_dict()
