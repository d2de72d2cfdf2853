from fastapi import APIRouter

from storefront.api.routes import (
    admin_categories,
    admin_images,
    admin_products,
    cart,
    categories,
    login,
    products,
    users,
    utils,
)

api_router = APIRouter()
api_router.include_router(login.router)
api_router.include_router(users.router)
api_router.include_router(utils.router)
api_router.include_router(products.router)
api_router.include_router(categories.router)
api_router.include_router(cart.router)
api_router.include_router(admin_products.router)
api_router.include_router(admin_images.router)
api_router.include_router(admin_categories.router)
