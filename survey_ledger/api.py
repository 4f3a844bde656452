from typing import Optional
from fastapi import Depends, FastAPI, Header, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .log import set_level
from .models import (
    SetRewardTokenRequest, CreateSurveyRequest, ToggleSurveyStatusRequest,
    ClaimRewardRequest, WithdrawRequest, RewardTokenResponse, CreateSurveyResponse,
    Survey, ClaimReceipt, WithdrawalReceipt, ParticipationResponse,
    LedgerConfiguration, CustodyBalanceResponse, EventHistoryResponse,
)
from .service import (
    LedgerService, InvalidArgumentError, InvalidConfigurationError,
    NotConfiguredError, SurveyNotFoundError, SurveyInactiveError,
    AlreadyParticipatedError, InsufficientFundsError, TransferFailedError,
    UnauthorizedError,
)

settings = get_settings()
set_level(settings.log_level)

app = FastAPI(
    title="Survey Reward Ledger API",
    description="One-time survey participation with fixed token rewards paid from ledger custody",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_service = LedgerService.from_settings(settings)


def get_ledger_service() -> LedgerService:
    return ledger_service


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "survey-reward-ledger"}


@app.get("/config", response_model=LedgerConfiguration, tags=["System"])
def get_configuration(service: LedgerService = Depends(get_ledger_service)) -> LedgerConfiguration:
    return service.get_configuration()


@app.post("/rewardToken", response_model=RewardTokenResponse, tags=["Admin"])
def set_reward_token(
    request: SetRewardTokenRequest,
    x_caller_id: Optional[str] = Header(None),
    service: LedgerService = Depends(get_ledger_service),
) -> RewardTokenResponse:
    try:
        return RewardTokenResponse(token_id=service.set_reward_token(x_caller_id, request.token_id))
    except UnauthorizedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except InvalidConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.post("/surveys", response_model=CreateSurveyResponse, tags=["Surveys"])
def create_survey(
    request: CreateSurveyRequest,
    x_caller_id: Optional[str] = Header(None),
    service: LedgerService = Depends(get_ledger_service),
) -> CreateSurveyResponse:
    try:
        return CreateSurveyResponse(survey_id=service.create_survey(x_caller_id, request.reward_amount))
    except UnauthorizedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except InvalidArgumentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except NotConfiguredError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@app.get("/surveys", response_model=list[Survey], tags=["Surveys"])
def list_surveys(service: LedgerService = Depends(get_ledger_service)) -> list[Survey]:
    return service.list_surveys()


@app.get("/surveys/{survey_id}", response_model=Survey, tags=["Surveys"])
def get_survey(survey_id: int, service: LedgerService = Depends(get_ledger_service)) -> Survey:
    try:
        return service.get_survey(survey_id)
    except SurveyNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Survey {survey_id} not found")


@app.post("/surveys/{survey_id}/status", response_model=Survey, tags=["Surveys"])
def toggle_survey_status(
    survey_id: int,
    request: ToggleSurveyStatusRequest,
    x_caller_id: Optional[str] = Header(None),
    service: LedgerService = Depends(get_ledger_service),
) -> Survey:
    try:
        return service.toggle_survey_status(x_caller_id, survey_id, request.active)
    except UnauthorizedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except SurveyNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Survey {survey_id} not found")


@app.post("/surveys/{survey_id}/claim", response_model=ClaimReceipt, tags=["Claims"])
def claim_reward(
    survey_id: int,
    request: ClaimRewardRequest,
    service: LedgerService = Depends(get_ledger_service),
) -> ClaimReceipt:
    try:
        return service.submit_and_claim(survey_id, request.user_id, request.response_proof)
    except SurveyNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Survey {survey_id} not found")
    except InvalidArgumentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SurveyInactiveError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except (AlreadyParticipatedError, NotConfiguredError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InsufficientFundsError as e:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(e))
    except TransferFailedError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@app.get(
    "/surveys/{survey_id}/participation/{user_id}",
    response_model=ParticipationResponse,
    tags=["Claims"],
)
def get_participation(
    survey_id: int, user_id: str, service: LedgerService = Depends(get_ledger_service)
) -> ParticipationResponse:
    return ParticipationResponse(
        survey_id=survey_id,
        user_id=user_id,
        has_participated=service.has_participated(survey_id, user_id),
    )


@app.post("/withdraw", response_model=WithdrawalReceipt, tags=["Admin"])
def withdraw_remaining(
    request: WithdrawRequest,
    x_caller_id: Optional[str] = Header(None),
    service: LedgerService = Depends(get_ledger_service),
) -> WithdrawalReceipt:
    try:
        return service.withdraw_remaining(x_caller_id, request.amount)
    except UnauthorizedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except InvalidArgumentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except NotConfiguredError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except TransferFailedError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@app.get("/balance", response_model=CustodyBalanceResponse, tags=["Admin"])
def get_custody_balance(service: LedgerService = Depends(get_ledger_service)) -> CustodyBalanceResponse:
    try:
        return service.custody_balance()
    except NotConfiguredError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@app.get("/events", response_model=EventHistoryResponse, tags=["Audit"])
def list_events(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: LedgerService = Depends(get_ledger_service),
) -> EventHistoryResponse:
    return service.list_events(limit, offset)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
