"""API v1 router composition."""

from fastapi import APIRouter

from canteen.api.v1.endpoints import blacklist, noshow, orders, settings, shifts, time

api_router: APIRouter = APIRouter()
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(shifts.router, prefix="/shifts", tags=["shifts"])
api_router.include_router(settings.router, prefix="/settings", tags=["settings"])
api_router.include_router(blacklist.router, prefix="/blacklist", tags=["blacklist"])
api_router.include_router(time.router, prefix="/time", tags=["time"])
api_router.include_router(noshow.router, prefix="/noshow", tags=["noshow"])
