from fastapi import APIRouter,HTTPException
import logging

from automation_service import AutomationService
from schemas import Automation_In,Automation_Update,Automation_Delete

logger = logging.getLogger('uvicorn.error')


def getAutomationRouter(service:AutomationService):
    automation_router=APIRouter(tags=["Automation"],prefix="/home/v1/automation")

    @automation_router.get("")
    def Get_Automations(homeId:str,userId:str,appCode:str,id:str|None=None,name:str|None=None,
                        inputId:str|None=None,outputId:str|None=None):
        res=service.get_automations(homeId,userId,appCode,id,name,inputId,outputId)
        if res["status_code"]!=200:
            raise HTTPException(status_code=res["status_code"],detail=res["data"])
        return {"message":"done","data":res["data"]}

    @automation_router.post("",status_code=201)
    def Automation_Addition(automation_in:Automation_In):
        logger.debug(f"Automation_Addition for home {automation_in.homeId}")
        res=service.create_automation(automation_in)
        if res["status_code"]!=201:
            raise HTTPException(status_code=res["status_code"],detail=res["data"])
        return {"message":"done","data":res["data"]}

    @automation_router.put("")
    def Automation_Modification(automation_update:Automation_Update):
        res=service.update_automation(automation_update)
        if res["status_code"]!=200:
            raise HTTPException(status_code=res["status_code"],detail=res["data"])
        return {"message":"done","data":res["data"]}

    @automation_router.delete("")
    def Automation_Deletion(automation_delete:Automation_Delete):
        res=service.delete_automation(automation_delete)
        if res["status_code"]!=200:
            raise HTTPException(status_code=res["status_code"],detail=res["data"])
        return res["data"]

    return automation_router
