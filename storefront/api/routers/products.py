# storefront/api/routers/products.py
from fastapi import APIRouter, Depends, HTTPException

from storefront.api.deps import get_inventory
from storefront.domain.errors import Conflict, NotFound
from storefront.domain.schemas import ProductCreate, ProductOut, ProductStatusIn, RestockIn
from storefront.services.inventory_ledger import InventoryLedger

router = APIRouter(prefix="/products", tags=["products"])


@router.post("/", response_model=ProductOut, status_code=201)
async def create_product(payload: ProductCreate, inventory: InventoryLedger = Depends(get_inventory)):
    try:
        return await inventory.create_product(payload)
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/{product_id}", response_model=ProductOut)
async def get_product(product_id: int, inventory: InventoryLedger = Depends(get_inventory)):
    try:
        return await inventory.get_product(product_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{product_id}/restock", response_model=ProductOut)
async def restock_product(
    product_id: int,
    payload: RestockIn,
    inventory: InventoryLedger = Depends(get_inventory),
):
    try:
        return await inventory.restock(product_id, payload.quantity)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/{product_id}/status", response_model=ProductOut)
async def set_product_status(
    product_id: int,
    payload: ProductStatusIn,
    inventory: InventoryLedger = Depends(get_inventory),
):
    try:
        return await inventory.set_status(product_id, payload.status)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
