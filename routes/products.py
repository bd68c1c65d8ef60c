from fastapi import APIRouter, Depends
from typing import List

from core.deps import get_product_repository
from schemas.product import ProductCreate, ProductUpdate, ProductOut
from services.repository import ProductRepository

router = APIRouter(prefix="/products", tags=["products"])


@router.get("", response_model=List[ProductOut])
def list_products(repo: ProductRepository = Depends(get_product_repository)):
    return repo.list()


@router.post("", response_model=ProductOut, status_code=201)
def create_product(data: ProductCreate, repo: ProductRepository = Depends(get_product_repository)):
    return repo.create(data.model_dump(exclude_unset=True))


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: int, repo: ProductRepository = Depends(get_product_repository)):
    return repo.get_by_id(product_id)


@router.api_route("/{product_id}", methods=["PUT", "PATCH"], response_model=ProductOut)
def update_product(product_id: int, data: ProductUpdate, repo: ProductRepository = Depends(get_product_repository)):
    # Only fields present in the body are touched
    return repo.update(product_id, data.model_dump(exclude_unset=True))


@router.delete("/{product_id}", status_code=204)
def delete_product(product_id: int, repo: ProductRepository = Depends(get_product_repository)):
    repo.delete(product_id)
    return None
