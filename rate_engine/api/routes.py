from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
import logging

from rate_engine.core.exceptions import (
    InvalidDestination,
    InvalidQuoteRequest,
    NoCoverage,
    UnknownTable,
    WeightExceeded,
)
from rate_engine.schemas.models import Quote, QuoteRequest, ValidationResult
from rate_engine.services.engine import RateEngine, get_rate_engine
from rate_engine.utils.json_sanitize import clean_json_safe

logger = logging.getLogger('rate_engine.routes')

router = APIRouter()


@router.post("/quote", response_model=Quote)
async def create_quote(request: QuoteRequest, engine: RateEngine = Depends(get_rate_engine)):
    """Cheapest economic and express quote for a parcel"""
    try:
        return await engine.quote(
            request.destination_postal_code,
            request.weight_kg,
            request.quantity,
            **request.options(),
        )
    except (WeightExceeded, InvalidDestination, InvalidQuoteRequest) as e:
        raise HTTPException(status_code=422, detail=str(e))
    except NoCoverage as e:
        logger.info(f"No coverage for {request.destination_postal_code}: {e}")
        raise HTTPException(status_code=404, detail=e.to_detail())


@router.post("/tables/{table_id}/validate", response_model=ValidationResult)
def validate_table(table_id: str, engine: RateEngine = Depends(get_rate_engine)):
    """Audit a pricing table and persist the verdict"""
    try:
        result = engine.validate_table(table_id)
    except UnknownTable as e:
        raise HTTPException(status_code=404, detail=str(e))

    content = result.model_dump(mode="json")
    content["status"] = result.status
    return JSONResponse(content=clean_json_safe(content))


@router.delete("/quote-cache")
def clear_quote_cache(engine: RateEngine = Depends(get_rate_engine)):
    """Drop every cached quote"""
    engine.clear_cache()
    return {"status": "cleared"}
