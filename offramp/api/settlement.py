"""
Settlement provider proxy.

Keeps the provider credentials server-side. Local validation failures map to
400 and provider failures to 502.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..container import OffRampServices
from ..core.chains import DEFAULT_CHAIN, get_chain, get_token
from ..core.errors import ConfigurationError, OffRampError, ValidationError
from ..core.fees import generate_reference
from ..core.models import SettlementOrder
from ..providers.paycrest import SettlementProviderError
from ..services.settlement import validate_order_payload
from .dependencies import get_services

router = APIRouter(prefix="/settlement")


class VerifyAccountRequest(BaseModel):
    institution: str = Field(..., description="Institution code")
    accountIdentifier: str = Field(..., description="Account number or mobile-money identifier")


class RecipientPayload(BaseModel):
    institution: str = ""
    accountIdentifier: str = ""
    accountName: str = ""
    currency: str = ""
    memo: Optional[str] = None


class CreateOrderRequest(BaseModel):
    amount: str = Field(..., description="Token amount, decimal string")
    rate: str = Field(..., description="Quoted rate, decimal string")
    token: str = Field("USDC", description="Token symbol")
    chainId: int = Field(DEFAULT_CHAIN.id, description="Source chain ID")
    recipient: RecipientPayload
    returnAddress: str = Field(..., description="Refund address on the source chain")
    reference: Optional[str] = Field(default=None, description="Unique per attempt; generated when omitted")

    def to_payload(self, network: str, reference: str) -> Dict[str, Any]:
        return {
            "amount": self.amount,
            "rate": self.rate,
            "network": network,
            "token": self.token.upper(),
            "recipient": self.recipient.model_dump(exclude_none=True),
            "returnAddress": self.returnAddress,
            "reference": reference,
        }


def _order_json(order: SettlementOrder) -> Dict[str, Any]:
    return {
        "id": order.id,
        "reference": order.reference,
        "amount": str(order.amount),
        "token": order.token,
        "network": order.network,
        "receiveAddress": order.receive_address,
        "senderFee": str(order.sender_fee),
        "transactionFee": str(order.transaction_fee),
        "validUntil": order.valid_until.isoformat() if order.valid_until else None,
        "status": order.status.value,
    }


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail={"message": exc.message, "errors": exc.errors})
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=400, detail={"message": exc.message})
    if isinstance(exc, OffRampError):
        return HTTPException(status_code=502, detail={"message": exc.message})
    return HTTPException(status_code=502, detail={"message": str(exc)})


@router.get("/currencies")
async def list_currencies(services: OffRampServices = Depends(get_services)) -> Dict[str, Any]:
    currencies = await services.quotes.load_currencies()
    return {
        "success": True,
        "currencies": [{"code": c.code, "name": c.name, "symbol": c.symbol} for c in currencies],
        "fallback": services.quotes.currencies_from_fallback,
    }


@router.get("/institutions/{currency}")
async def list_institutions(
    currency: str,
    services: OffRampServices = Depends(get_services),
) -> Dict[str, Any]:
    try:
        institutions = await services.institutions.institutions(currency)
    except OffRampError as exc:
        raise _http_error(exc)
    return {
        "success": True,
        "institutions": [{"code": i.code, "name": i.name, "type": i.type} for i in institutions],
    }


@router.get("/rates")
async def get_rate(
    amount: str = Query(..., description="Token amount"),
    currency: str = Query(..., description="Fiat currency code"),
    token: str = Query("USDC"),
    chain_id: int = Query(DEFAULT_CHAIN.id, alias="chainId"),
    services: OffRampServices = Depends(get_services),
) -> Dict[str, Any]:
    try:
        chain = get_chain(chain_id)
        token_config = get_token(token)
        await services.quotes.load_currencies()
        quote = await services.quotes.quote(token_config, amount, currency, chain)
    except OffRampError as exc:
        raise _http_error(exc)
    return {
        "success": True,
        "rate": quote.rate,
        "amount": str(quote.amount),
        "currency": quote.currency,
        "network": quote.network,
        "receiveAmount": str(services.quotes.estimate_receive(quote)),
        "fetchedAt": quote.fetched_at.isoformat(),
    }


@router.post("/verify-account")
async def verify_account(
    request: VerifyAccountRequest,
    services: OffRampServices = Depends(get_services),
) -> Dict[str, Any]:
    try:
        details = await services.verifier.verify(request.institution, request.accountIdentifier)
    except OffRampError as exc:
        raise _http_error(exc)
    return {"success": True, "verified": True, "accountName": details.get("accountName")}


@router.post("/orders")
async def create_order(
    request: CreateOrderRequest,
    services: OffRampServices = Depends(get_services),
) -> Dict[str, Any]:
    try:
        chain = get_chain(request.chainId)
    except ConfigurationError as exc:
        raise _http_error(exc)

    reference = request.reference or generate_reference(services.config.order_reference_prefix)
    payload = request.to_payload(chain.network, reference)
    errors: List[str] = validate_order_payload(payload)
    if errors:
        raise _http_error(ValidationError("Invalid order", errors))

    try:
        data = await services.provider.create_order(payload)
    except SettlementProviderError as exc:
        raise HTTPException(status_code=502, detail={"message": "Failed to create payment order", "reason": str(exc)})

    order = SettlementOrder.from_provider(data, reference=reference)
    if not order.amount:
        order.amount = Decimal(request.amount)
    return {"success": True, "order": _order_json(order)}


@router.get("/orders/{order_id}")
async def get_order_status(
    order_id: str,
    services: OffRampServices = Depends(get_services),
) -> Dict[str, Any]:
    try:
        snapshot = await services.settlement.fetch_status(order_id)
    except OffRampError as exc:
        raise _http_error(exc)
    return {
        "success": True,
        "orderId": snapshot.order_id,
        "status": snapshot.status.value,
        "transactionHash": snapshot.transaction_hash,
        "final": snapshot.is_final,
        "updatedAt": snapshot.updated_at.isoformat(),
    }
