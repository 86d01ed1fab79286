# storefront/api/routers/checkout.py
from fastapi import APIRouter, Depends, HTTPException

from storefront.api.deps import get_reconciler
from storefront.domain.errors import CartDrainError, Conflict, EmptyCart, InternalError, NoPurchasableItems
from storefront.domain.schemas import CheckoutIn, CheckoutOut
from storefront.services.purchase_service import PurchaseReconciler
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post("", response_model=CheckoutOut)
async def checkout(payload: CheckoutIn, reconciler: PurchaseReconciler = Depends(get_reconciler)):
    """
    Zakup zawartosci aktywnego koszyka.
    200 - kupiono wszystko albo czesc, 400 - pusty koszyk lub nic nie do kupienia.
    """
    try:
        result = await reconciler.checkout(
            user_id=payload.user_id,
            user_email=payload.email,
            shipping=payload.shipping,
            discount=payload.discount,
            payment_method=payload.payment_method,
            shipping_info=payload.shipping_info,
        )
    except EmptyCart as e:
        raise HTTPException(status_code=400, detail={"message": str(e)})
    except NoPurchasableItems as e:
        raise HTTPException(
            status_code=400,
            detail={
                "message": str(e),
                "failed_products": [f.model_dump(mode="json") for f in e.failed],
            },
        )
    except Conflict as e:
        raise HTTPException(status_code=409, detail={"message": str(e)})
    except CartDrainError as e:
        raise HTTPException(status_code=500, detail={"message": str(e), "ticket_code": e.ticket_code})
    except InternalError as e:
        raise HTTPException(status_code=500, detail={"message": str(e)})

    return CheckoutOut(
        message=result.message,
        ticket=result.ticket,
        failed_products=result.failed or None,
    )
