"""Privacy mode endpoints."""

from typing import Any, Dict, FrozenSet, List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from auth import get_current_account, get_owned_resources
from ledger import LedgerError, PermissionDeniedError
from privacy import PrivacyGate, PrivacyMode
from ..deps import get_privacy_gate
from ..errors import http_error

# Create router
router = APIRouter(
    prefix="/privacy",
    tags=["Privacy"]
)

class RegisterResourceRequest(BaseModel):
    """Request model for putting a resource under privacy control."""
    resource_id: str
    mode: PrivacyMode = PrivacyMode.PRIVATE

class SetModeRequest(BaseModel):
    """Request model for changing a privacy mode."""
    mode: PrivacyMode

@router.post("/resources", status_code=status.HTTP_201_CREATED)
async def register_resource(
    request: RegisterResourceRequest,
    account_id: UUID = Depends(get_current_account),
    owned: FrozenSet[str] = Depends(get_owned_resources),
    gate: PrivacyGate = Depends(get_privacy_gate)
) -> Dict[str, Any]:
    """Register a resource owned by the caller.

    Ownership comes from the caller's token; a resource it does not list
    cannot be registered.
    """
    try:
        if request.resource_id not in owned:
            raise PermissionDeniedError(
                f"Account {account_id} does not own resource {request.resource_id}"
            )
        return await gate.register_resource(request.resource_id, account_id, request.mode.value)
    except LedgerError as e:
        raise http_error(e)

@router.get("/resources/{resource_id}/access")
async def check_access(
    resource_id: str,
    account_id: UUID = Depends(get_current_account),
    gate: PrivacyGate = Depends(get_privacy_gate)
) -> Dict[str, Any]:
    """Report what the caller may see of a resource."""
    try:
        decision = await gate.check_access(resource_id, account_id)
    except LedgerError as e:
        raise http_error(e)
    return decision.to_dict()

@router.put("/resources/{resource_id}/mode")
async def set_mode(
    resource_id: str,
    request: SetModeRequest,
    account_id: UUID = Depends(get_current_account),
    gate: PrivacyGate = Depends(get_privacy_gate)
) -> Dict[str, Any]:
    """Change the privacy mode of one of the caller's resources."""
    try:
        return await gate.set_mode(resource_id, request.mode.value, account_id)
    except LedgerError as e:
        raise http_error(e)

@router.get("/resources/{resource_id}/audit")
async def get_audit_trail(
    resource_id: str,
    account_id: UUID = Depends(get_current_account),
    gate: PrivacyGate = Depends(get_privacy_gate)
) -> List[Dict[str, Any]]:
    """Get the mode change history of one of the caller's resources."""
    try:
        return await gate.get_audit_trail(resource_id, account_id)
    except LedgerError as e:
        raise http_error(e)
