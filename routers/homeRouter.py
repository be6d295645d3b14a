from fastapi import APIRouter,HTTPException

from automation_service import AutomationService
from schemas import Home_Delete


def getHomeRouter(service:AutomationService):
    home_router=APIRouter(tags=["Home"],prefix="/home/v1/home")

    @home_router.delete("")
    def Home_Deletion(home_delete:Home_Delete):
        res=service.delete_home(home_delete)
        if res["status_code"]!=200:
            raise HTTPException(status_code=res["status_code"],detail=res["data"])
        return res["data"]

    return home_router
