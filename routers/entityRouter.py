from fastapi import APIRouter,HTTPException

from automation_service import AutomationService
from schemas import Entity_Delete


def getEntityRouter(service:AutomationService):
    entity_router=APIRouter(tags=["Entity"],prefix="/home/v1/entity")

    @entity_router.delete("")
    def Entity_Deletion(entity_delete:Entity_Delete):
        res=service.delete_entity(entity_delete)
        if res["status_code"]!=200:
            raise HTTPException(status_code=res["status_code"],detail=res["data"])
        return res["data"]

    return entity_router
