from fastapi import APIRouter
from shopfront.api import version_prefix
from shopfront.addresses.routes import address_admin_router, address_router
from shopfront.auth.routes import auth_router
from shopfront.checkout.routes import checkout_router
from shopfront.common.routes import home_router
from shopfront.engagement.routes import engagement_router
from shopfront.guests.routes import guest_admin_router, guest_router
from shopfront.inventory.routes import inventory_router
from shopfront.products.routes import prods_admin_router, prods_public_router
from shopfront.stock_reservations.routes import reservations_router
from shopfront.user_activity.routes import activity_admin_router, activity_router, behavior_router


public_routers = APIRouter(prefix=version_prefix)

public_routers.include_router(auth_router, prefix="/auth", tags=["auth"])
public_routers.include_router(prods_public_router, prefix="/products", tags=["products-public"])
public_routers.include_router(inventory_router, prefix="/inventories", tags=["inventories"])
public_routers.include_router(reservations_router, prefix="/stock-reservations", tags=["stock-reservations"])
public_routers.include_router(address_router, prefix="/addresses", tags=["addresses"])
public_routers.include_router(guest_router, prefix="/guests", tags=["guests"])
public_routers.include_router(activity_router, prefix="/user-activities", tags=["user-activities"])
public_routers.include_router(behavior_router, prefix="/user-behaviors", tags=["user-behaviors"])
public_routers.include_router(engagement_router, prefix="/engagement-metrics", tags=["engagement-metrics"])
public_routers.include_router(checkout_router, prefix="/checkout", tags=["checkout"])
public_routers.include_router(home_router, tags=["home"])

#--------------------------------------------------------------------------------------------------------

admin_routers = APIRouter(prefix=f"{version_prefix}/admin")

admin_routers.include_router(prods_admin_router, prefix="/products", tags=["products-admin"])
admin_routers.include_router(address_admin_router, prefix="/addresses", tags=["addresses-admin"])
admin_routers.include_router(guest_admin_router, prefix="/guests", tags=["guests-admin"])
admin_routers.include_router(activity_admin_router, prefix="/user-activities", tags=["user-activities-admin"])
