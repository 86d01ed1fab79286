#storefront/api/routers/carts.py
from fastapi import APIRouter, Depends, HTTPException, Query

from storefront.api.deps import get_cart_store
from storefront.domain.errors import Conflict, NotFound, ProductInactive
from storefront.domain.schemas import (
    CreateCartIn,
    ItemIn,
    QuantityIn,
    CartOut,
)
from storefront.services.cart_store import CartStore

router = APIRouter(prefix="/carts", tags=["carts"])


async def _owned_cart(store: CartStore, cart_id: int, user_id: int) -> CartOut:
    try:
        cart = await store.get_cart(cart_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    if cart.user_id != user_id:
        raise HTTPException(status_code=403, detail="Brak dostepu do koszyka")
    return cart


async def _run(command):
    try:
        return await command
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (ProductInactive, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/", response_model=CartOut)
async def create_cart(payload: CreateCartIn, store: CartStore = Depends(get_cart_store)):
    return await store.create_cart(payload.user_id)


@router.get("/{cart_id}", response_model=CartOut)
async def get_cart(
    cart_id: int,
    user_id: int = Query(...),
    store: CartStore = Depends(get_cart_store),
):
    return await _owned_cart(store, cart_id, user_id)


@router.post("/{cart_id}/items", response_model=CartOut)
async def add_item(
    cart_id: int,
    payload: ItemIn,
    user_id: int = Query(...),
    store: CartStore = Depends(get_cart_store),
):
    await _owned_cart(store, cart_id, user_id)
    return await _run(store.add_line_item(cart_id, payload.product_id, payload.quantity))


@router.put("/{cart_id}/items/{product_id}", response_model=CartOut)
async def set_item_quantity(
    cart_id: int,
    product_id: int,
    payload: QuantityIn,
    user_id: int = Query(...),
    store: CartStore = Depends(get_cart_store),
):
    await _owned_cart(store, cart_id, user_id)
    return await _run(store.set_line_item_quantity(cart_id, product_id, payload.quantity))


@router.delete("/{cart_id}/items/{product_id}", response_model=CartOut)
async def remove_item(
    cart_id: int,
    product_id: int,
    user_id: int = Query(...),
    store: CartStore = Depends(get_cart_store),
):
    await _owned_cart(store, cart_id, user_id)
    return await _run(store.remove_line_item(cart_id, product_id))


@router.delete("/{cart_id}/items", response_model=CartOut)
async def clear_items(
    cart_id: int,
    user_id: int = Query(...),
    store: CartStore = Depends(get_cart_store),
):
    await _owned_cart(store, cart_id, user_id)
    return await _run(store.clear_line_items(cart_id))
