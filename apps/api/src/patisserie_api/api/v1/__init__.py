from fastapi import APIRouter

from .endpoints import free_product_admin, free_products, health

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(free_products.router)
router.include_router(free_product_admin.router)
