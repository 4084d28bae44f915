from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .config import configure_logging, get_settings
from .errors import ConfigurationError, OpportunityNotFound, RevenueRadarError
from .pipeline import AnalysisService, build_service, load_issues_csv
from .schemas import (
    Cluster,
    ClusterResult,
    DashboardMetrics,
    Issue,
    Opportunity,
    OpportunityStatus,
    RevenueSignal,
)

logger = logging.getLogger(__name__)


class AnalysisRequest(BaseModel):
    organization_id: str = Field(..., min_length=1)
    issue_ids: list[str] | None = None


class ClusterResponse(BaseModel):
    success: bool = True
    clusters: list[ClusterResult]
    count: int = Field(..., ge=0)


class SignalResponse(BaseModel):
    success: bool = True
    signals: list[RevenueSignal]
    count: int = Field(..., ge=0)


class OpportunityResponse(BaseModel):
    success: bool = True
    opportunities: list[Opportunity]
    count: int = Field(..., ge=0)


class RecalculateResponse(BaseModel):
    rps_score: float


def create_app(service: AnalysisService | None = None) -> FastAPI:
    app = FastAPI(title="Revenue Radar", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.service = service

    def get_service(request: Request) -> AnalysisService:
        if request.app.state.service is None:
            settings = get_settings()
            configure_logging(settings)
            try:
                request.app.state.service = build_service(settings)
            except ConfigurationError as exc:
                raise HTTPException(status_code=503, detail=str(exc)) from exc
        return request.app.state.service

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/issues", response_model=Issue)
    def upsert_issue(issue: Issue, service: AnalysisService = Depends(get_service)) -> Issue:
        return service.store.upsert_issue(issue)

    @app.post("/issues/import")
    async def import_issues(
        organization_id: str = Query(..., min_length=1),
        file: UploadFile = File(...),
        service: AnalysisService = Depends(get_service),
    ) -> dict[str, int]:
        if not (file.filename or "").endswith(".csv"):
            raise HTTPException(status_code=400, detail="Please upload a CSV file")
        content = await file.read()
        try:
            issues = load_issues_csv(content, organization_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        for issue in issues:
            service.store.upsert_issue(issue)
        return {"imported": len(issues)}

    @app.post("/analysis/cluster", response_model=ClusterResponse)
    def run_clustering(payload: AnalysisRequest, service: AnalysisService = Depends(get_service)) -> ClusterResponse:
        try:
            clusters = service.cluster_issues(payload.organization_id, payload.issue_ids)
        except RevenueRadarError as exc:
            logger.exception("Clustering failed for organization %s", payload.organization_id)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return ClusterResponse(clusters=clusters, count=len(clusters))

    @app.get("/analysis/cluster", response_model=list[Cluster])
    def list_clusters(
        organization_id: str = Query(..., min_length=1),
        service: AnalysisService = Depends(get_service),
    ) -> list[Cluster]:
        clusters = service.store.list_clusters(organization_id)
        return sorted(clusters, key=lambda cluster: cluster.issue_count, reverse=True)

    @app.post("/analysis/signals", response_model=SignalResponse)
    async def run_signal_detection(
        payload: AnalysisRequest, service: AnalysisService = Depends(get_service)
    ) -> SignalResponse:
        try:
            signals = await service.detect_signals(payload.organization_id, payload.issue_ids)
        except RevenueRadarError as exc:
            logger.exception("Signal detection failed for organization %s", payload.organization_id)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return SignalResponse(signals=signals, count=len(signals))

    @app.post("/analysis/opportunities", response_model=OpportunityResponse)
    def run_opportunities(
        payload: AnalysisRequest, service: AnalysisService = Depends(get_service)
    ) -> OpportunityResponse:
        try:
            opportunities = service.generate_opportunities(payload.organization_id)
        except RevenueRadarError as exc:
            logger.exception("Opportunity generation failed for organization %s", payload.organization_id)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return OpportunityResponse(opportunities=opportunities, count=len(opportunities))

    @app.get("/analysis/opportunities", response_model=list[Opportunity])
    def list_opportunities(
        organization_id: str = Query(..., min_length=1),
        status: OpportunityStatus | None = None,
        limit: int = Query(50, ge=1, le=500),
        service: AnalysisService = Depends(get_service),
    ) -> list[Opportunity]:
        return service.store.list_opportunities(organization_id, status=status, limit=limit)

    @app.post("/opportunities/{opportunity_id}/recalculate", response_model=RecalculateResponse)
    def recalculate(opportunity_id: str, service: AnalysisService = Depends(get_service)) -> RecalculateResponse:
        try:
            return RecalculateResponse(rps_score=service.recalculate_rps(opportunity_id))
        except OpportunityNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.get("/dashboard/metrics", response_model=DashboardMetrics)
    def metrics(
        organization_id: str = Query(..., min_length=1),
        service: AnalysisService = Depends(get_service),
    ) -> DashboardMetrics:
        return service.metrics(organization_id)

    return app


app = create_app()
