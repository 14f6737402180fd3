from fastapi import APIRouter, HTTPException, Request

from paygate.models.exceptions import (
    InvalidTransitionError,
    MerchantNotFoundError,
    OperationInProgressError,
    ProcessorOperationError,
    TransactionNotFoundError,
    UnsupportedOperationError,
)
from paygate.models.transaction import (
    CaptureRequest,
    TransactionRequest,
    TransactionResponse,
    VoidRequest,
)

router = APIRouter()


@router.post("/transactions", response_model=TransactionResponse)
async def create_transaction(
    body: TransactionRequest,
    request: Request,
) -> TransactionResponse:
    """
    Authorize a payment on the best-scoring eligible processor.

    - Technical failures and timeouts fall back to another processor.
    - Business declines (insufficient funds, fraud, ...) stop immediately.
    - Re-sending a known transaction_id returns the stored result.
    """
    engine = request.app.state.ctx.payment_engine
    try:
        txn = await engine.authorize(body)
    except MerchantNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return TransactionResponse.from_transaction(txn)


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(transaction_id: str, request: Request) -> TransactionResponse:
    try:
        txn = request.app.state.ctx.transactions.get(transaction_id)
    except TransactionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return TransactionResponse.from_transaction(txn)


@router.post("/transactions/{transaction_id}/capture", response_model=TransactionResponse)
async def capture_transaction(
    transaction_id: str,
    request: Request,
    body: CaptureRequest | None = None,
) -> TransactionResponse:
    engine = request.app.state.ctx.payment_engine
    try:
        txn = await engine.capture(transaction_id, body or CaptureRequest())
    except TransactionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except (InvalidTransitionError, UnsupportedOperationError) as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except ProcessorOperationError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return TransactionResponse.from_transaction(txn)


@router.post("/transactions/{transaction_id}/void", response_model=TransactionResponse)
async def void_transaction(
    transaction_id: str,
    request: Request,
    body: VoidRequest | None = None,
) -> TransactionResponse:
    engine = request.app.state.ctx.payment_engine
    try:
        txn = await engine.void(transaction_id, body or VoidRequest())
    except TransactionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except (InvalidTransitionError, UnsupportedOperationError, OperationInProgressError) as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ProcessorOperationError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return TransactionResponse.from_transaction(txn)
