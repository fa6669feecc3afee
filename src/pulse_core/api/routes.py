"""FastAPI routes for the Pulse metrics API."""
import logging
from datetime import date, datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field

from ..metrics.pipeline import MetricsPipeline
from ..metrics.schema import DateRange, MetricsReport
from ..sources.exceptions import InvalidCredential, RateLimited, SourceError
from .auth import require_api_key


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1", tags=["metrics"], dependencies=[Depends(require_api_key)]
)

DEFAULT_RANGE_DAYS = 30


class DateRangeModel(BaseModel):
    """Inclusive date range echoed back with every report."""

    model_config = ConfigDict(populate_by_name=True)

    from_: date = Field(..., alias="from", description="First day (inclusive)")
    to: date = Field(..., description="Last day (inclusive)")


class MetricsResponse(BaseModel):
    """Merged daily series with totals and derived rates."""

    model_config = ConfigDict(populate_by_name=True)

    date_range: DateRangeModel
    summary: dict[str, Any] = Field(
        ..., description="Per-source totals plus a 'rates' mapping"
    )
    daily: list[dict[str, Any]] = Field(
        ..., description="One row per date: {date, <source>: {counter: value}}"
    )
    errors: dict[str, str] = Field(
        default_factory=dict, description="Per-source fetch errors (redacted)"
    )
    stale_sources: list[str] = Field(
        default_factory=list, description="Sources served from an expired cache"
    )
    generated_at: Optional[datetime] = None


class RefreshRequest(BaseModel):
    """Request payload for a forced refresh."""

    model_config = ConfigDict(populate_by_name=True)

    from_: Optional[date] = Field(None, alias="from", description="First day")
    to: Optional[date] = Field(None, description="Last day")
    days: Optional[int] = Field(None, ge=0, description="Last N days up to today")
    sources: Optional[list[str]] = Field(
        None, description="Subset of sources (default: all configured)"
    )
    tags: Optional[list[str]] = Field(
        None, description="Email tags to re-fetch as well (default: configured tags)"
    )


class EmailTagStats(BaseModel):
    """Email totals and rates for one tag."""

    tag: str
    sent: float = 0
    delivered: float = 0
    opened: float = 0
    clicked: float = 0
    bounced: float = 0
    spam: float = 0
    unsubscribed: float = 0
    open_rate: float = 0.0
    click_rate: float = 0.0
    bounce_rate: float = 0.0
    error: Optional[str] = None


class ProductModel(BaseModel):
    name: str
    revenue: float
    quantity: int
    average_price: float


class TransactionModel(BaseModel):
    event: str
    item_name: str
    item_plan_name: str
    date: Optional[date]
    confirmed: bool
    price: float


class SalesProductsResponse(BaseModel):
    products: list[ProductModel]
    recent_transactions: list[TransactionModel]


class TokenInfoResponse(BaseModel):
    valid: bool
    expires_at: int = 0
    scopes: list[str] = Field(default_factory=list)
    app_id: str = ""
    error: Optional[str] = None


class TokenUpdateRequest(BaseModel):
    access_token: str = Field(..., description="New externally issued access token")


class TokenUpdateResponse(BaseModel):
    updated: bool


def get_pipeline(request: Request) -> MetricsPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Metrics pipeline is not ready",
        )
    return pipeline


def resolve_range(
    from_: Optional[date] = None,
    to: Optional[date] = None,
    days: Optional[int] = None,
    today: Optional[date] = None,
) -> DateRange:
    """days=N wins over from/to; default is the last 30 days.

    Raises:
        HTTPException: 400 if the range is inverted or days is negative
    """
    today = today or date.today()
    try:
        if days is not None:
            return DateRange.last_days(days, today)
        if from_ is None and to is None:
            return DateRange.last_days(DEFAULT_RANGE_DAYS, today)

        end = to or today
        start = from_ or DateRange.last_days(DEFAULT_RANGE_DAYS, end).start
        return DateRange(start, end)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc


def parse_csv_param(value: Optional[str]) -> Optional[list[str]]:
    if value is None:
        return None
    items = [item.strip().lower() for item in value.split(",") if item.strip()]
    return items or None


def _source_error(exc: Exception) -> HTTPException:
    """Translate a surfaced pipeline error into an HTTP response."""
    if isinstance(exc, RateLimited):
        headers = None
        if exc.retry_after is not None:
            headers = {"Retry-After": str(max(1, round(exc.retry_after)))}
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"message": str(exc), "rate_limited": True},
            headers=headers,
        )
    if isinstance(exc, SourceError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, LookupError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _report_response(report: MetricsReport) -> MetricsResponse:
    return MetricsResponse(
        date_range=DateRangeModel(
            from_=report.date_range.start, to=report.date_range.end
        ),
        summary=report.summary.to_dict(),
        daily=[row.to_dict() for row in report.daily],
        errors=report.errors,
        stale_sources=report.stale_sources,
        generated_at=report.generated_at,
    )


@router.get(
    "/metrics",
    response_model=MetricsResponse,
    response_model_by_alias=True,
    summary="Merged daily metrics",
)
async def get_metrics(
    from_: Optional[date] = Query(None, alias="from"),
    to: Optional[date] = Query(None),
    days: Optional[int] = Query(None),
    sources: Optional[str] = Query(None, description="Comma-separated sources"),
    pipeline: MetricsPipeline = Depends(get_pipeline),
) -> MetricsResponse:
    """Return the merged series, served from cache while fresh."""
    date_range = resolve_range(from_, to, days)

    try:
        report = await pipeline.get_metrics(date_range, parse_csv_param(sources))
    except (SourceError, ValueError) as exc:
        logger.warning("GET /metrics failed: %s", exc)
        raise _source_error(exc) from exc

    return _report_response(report)


@router.post(
    "/metrics/refresh",
    response_model=MetricsResponse,
    response_model_by_alias=True,
    summary="Force re-fetch of every requested source",
)
async def refresh_metrics(
    request: Request,
    payload: Optional[RefreshRequest] = None,
    pipeline: MetricsPipeline = Depends(get_pipeline),
) -> MetricsResponse:
    payload = payload or RefreshRequest()
    date_range = resolve_range(payload.from_, payload.to, payload.days)
    sources = [s.strip().lower() for s in payload.sources] if payload.sources else None
    tags = payload.tags
    if tags is None:
        tags = list(getattr(request.app.state, "email_tags", []))

    try:
        report = await pipeline.force_refresh(date_range, sources, tags)
    except (SourceError, ValueError) as exc:
        logger.warning("POST /metrics/refresh failed: %s", exc)
        raise _source_error(exc) from exc

    logger.info(
        "Forced refresh %s..%s (sources=%s, errors=%s)",
        date_range.start.isoformat(),
        date_range.end.isoformat(),
        sources or "all",
        len(report.errors),
    )
    return _report_response(report)


@router.get(
    "/email/tags",
    response_model=list[EmailTagStats],
    summary="Email totals and rates per tag",
)
async def get_email_tags(
    request: Request,
    from_: Optional[date] = Query(None, alias="from"),
    to: Optional[date] = Query(None),
    days: Optional[int] = Query(None),
    tags: Optional[str] = Query(None, description="Comma-separated tags"),
    pipeline: MetricsPipeline = Depends(get_pipeline),
) -> list[EmailTagStats]:
    date_range = resolve_range(from_, to, days)
    tag_list = parse_csv_param(tags)
    if tag_list is None:
        tag_list = list(getattr(request.app.state, "email_tags", []))

    try:
        breakdown = await pipeline.get_email_breakdown(date_range, tag_list)
    except (SourceError, LookupError) as exc:
        raise _source_error(exc) from exc

    return [EmailTagStats(**row) for row in breakdown]


@router.get(
    "/sales/products",
    response_model=SalesProductsResponse,
    summary="Product stats and recent transactions",
)
async def get_sales_products(
    from_: Optional[date] = Query(None, alias="from"),
    to: Optional[date] = Query(None),
    days: Optional[int] = Query(None),
    pipeline: MetricsPipeline = Depends(get_pipeline),
) -> SalesProductsResponse:
    date_range = resolve_range(from_, to, days)

    try:
        details = await pipeline.get_sales_details(date_range)
    except (SourceError, LookupError) as exc:
        raise _source_error(exc) from exc

    return SalesProductsResponse(
        products=[
            ProductModel(
                name=p.name,
                revenue=round(p.revenue, 2),
                quantity=p.quantity,
                average_price=round(p.average_price, 2),
            )
            for p in details["products"]
        ],
        recent_transactions=[
            TransactionModel(
                event=t.event,
                item_name=t.item_name,
                item_plan_name=t.item_plan_name,
                date=t.date,
                confirmed=t.confirmed,
                price=t.price,
            )
            for t in details["recent_transactions"]
        ],
    )


@router.get(
    "/ads/token",
    response_model=TokenInfoResponse,
    summary="Validate the configured ads access token",
)
async def get_ads_token(
    pipeline: MetricsPipeline = Depends(get_pipeline),
) -> TokenInfoResponse:
    try:
        info = await pipeline.validate_ads_token()
    except InvalidCredential as exc:
        return TokenInfoResponse(valid=False, error=str(exc))
    except (SourceError, LookupError) as exc:
        raise _source_error(exc) from exc

    return TokenInfoResponse(**info)


@router.put(
    "/ads/token",
    response_model=TokenUpdateResponse,
    summary="Replace the ads access token",
    description=(
        "Install a newly issued token. Clears the terminal credential failure "
        "so the next request fetches ads data again."
    ),
)
async def put_ads_token(
    payload: TokenUpdateRequest,
    pipeline: MetricsPipeline = Depends(get_pipeline),
) -> TokenUpdateResponse:
    if not payload.access_token.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="access_token must be non-empty",
        )

    try:
        pipeline.update_ads_token(payload.access_token.strip())
    except LookupError as exc:
        raise _source_error(exc) from exc

    logger.info("Ads access token updated via API")
    return TokenUpdateResponse(updated=True)
