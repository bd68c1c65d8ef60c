from fastapi import APIRouter, Depends
from typing import List

from core.deps import get_review_repository
from schemas.review import ReviewCreate, ReviewOut
from services.repository import ReviewRepository

router = APIRouter(prefix="/reviews", tags=["reviews"])


@router.get("", response_model=List[ReviewOut])
def list_reviews(repo: ReviewRepository = Depends(get_review_repository)):
    return repo.list()


@router.post("", response_model=ReviewOut, status_code=201)
def create_review(data: ReviewCreate, repo: ReviewRepository = Depends(get_review_repository)):
    return repo.create(data.model_dump(exclude_unset=True))


@router.get("/{review_id}", response_model=ReviewOut)
def get_review(review_id: int, repo: ReviewRepository = Depends(get_review_repository)):
    return repo.get_by_id(review_id)


@router.delete("/{review_id}", status_code=204)
def delete_review(review_id: int, repo: ReviewRepository = Depends(get_review_repository)):
    repo.delete(review_id)
    return None
