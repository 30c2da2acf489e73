"""Platform adapter listing."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from catalog_pipeline.ingestion.adapters import FALLBACK_ADAPTER, get_adapter_info, list_adapters

router = APIRouter(prefix="/api/adapters", tags=["adapters"])


@router.get("")
async def api_list_adapters() -> JSONResponse:
    """List registered platform adapters and the fallback used for unknown platforms."""
    return JSONResponse({
        "adapters": [get_adapter_info(name) for name in list_adapters()],
        "fallback": FALLBACK_ADAPTER,
    })
