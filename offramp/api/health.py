from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..container import OffRampServices
from .dependencies import get_services

router = APIRouter()


@router.get("/healthz")
async def health_check(services: OffRampServices = Depends(get_services)) -> Dict[str, Any]:
    """Health check endpoint that verifies provider status"""

    provider_status = {
        "settlement": await services.provider.health_check(),
        "bundler": await services.bundler.health_check(),
        "paymaster": await services.paymaster.health_check(),
    }

    # Gas abstraction is optional; only the settlement provider decides health
    settlement_ok = provider_status["settlement"]["status"] == "healthy"
    available_providers = sum(
        1 for status in provider_status.values()
        if status["status"] == "healthy"
    )

    return {
        "status": "healthy" if settlement_ok else "degraded",
        "providers": provider_status,
        "available_providers": available_providers,
        "total_providers": len(provider_status),
        "gas_abstraction_chains": services.config.gas_abstraction_chain_ids,
    }
