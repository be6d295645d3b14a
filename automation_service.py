#region Import
import json,logging
from database_functions import (
    DbPathEnum,
    get_db_transaction,now_timestamp,add_log,
    get_user_by_id,get_home_of_user,get_home_owner,
    get_device_with_area,get_device_for_deletion,delete_device,
    get_automation,search_automations,get_automations_of_home,
    insert_automation,update_automation,delete_automation,deactivate_automations,
    delete_home_as_owner,delete_home_as_member
    )
from automation_functions import (
    is_in_hc,resolve_inputs,resolve_outputs,
    resolve_input_for_read,resolve_output_for_read,
    compute_changes,build_definition
    )
from rule_engine_functions import RuleEngineClient
from semaphore_functions import Semaphore
from classes import ErrorCode,AutomationBuilder
from schemas import Automation_In,Automation_Update,Automation_Delete,Home_Delete,Entity_Delete,dump_references
#endregion

logger = logging.getLogger(__name__)


def buildResult(status_code:int,data):
    return {"status_code":status_code,"data":data}

def buildError(status_code:int,code:ErrorCode,data=None):
    detail={"code":code}
    if data is not None:
        detail["data"]=data
    return {"status_code":status_code,"data":detail}

def lock_resource(automation_id:str,user_id:str,home_id:str,app_code:str) -> str:
    return f"/home/{automation_id}/{user_id}/{home_id}/{app_code}/updateAutomation"


class AutomationService:
    '''
    Keeps the local automation cache and the rule engine consistent.

    Every mutating operation calls the rule engine first and writes the local
    rows in one transaction only once the engine confirmed; updates and deletes of the
    same automation are serialized through the semaphore.
    '''

    def __init__(self,db_path:str,rule_engine:RuleEngineClient,semaphore:Semaphore|None=None,
                 lock_timeout:float|None=30,logs_db_path:str=DbPathEnum.LOGS):
        self.db_path=db_path
        self.rule_engine=rule_engine
        self.semaphore=semaphore or Semaphore()
        self.lock_timeout=lock_timeout
        self.logs_db_path=logs_db_path

    def log_event(self,actor:str,event:str,target:str,payload:dict):
        add_log([(actor,event,target,json.dumps(payload,default=str),now_timestamp())],self.logs_db_path)

    #region Read
    def get_automations(self,home_id:str,user_id:str,app_code:str,automation_id:str|None=None,
                        name:str|None=None,input_id:str|None=None,output_id:str|None=None):
        try:
            home_owner=get_home_owner(self.db_path,home_id,app_code)
            owner_id=home_owner["userId"] if home_owner else None
            candidates=[user_id] if owner_id==user_id else [user_id,owner_id]

            automations=search_automations(self.db_path,home_id,app_code,automation_id,name,input_id,output_id)
            logger.info(f"get_automations:found {len(automations)} automations for home {home_id}")

            results:dict[str,AutomationBuilder]={}
            for automation in automations:
                results[automation["id"]]=AutomationBuilder(header={
                    "id":automation["id"],
                    "name":automation.get("name"),
                    "homeId":automation.get("homeId"),
                    "userId":automation.get("userId"),
                    "hcId":automation.get("hcId"),
                    "hcInfo":automation.get("hcInfo"),
                    "owner":automation.get("createdBy")==user_id,
                    "position":automation.get("position"),
                    "logic":automation.get("logic"),
                    "type":automation.get("type"),
                    "logo":automation.get("logo"),
                    "gmt":automation.get("GMT"),
                    "appCode":automation.get("appCode"),
                    "active":automation.get("active"),
                    "trigger":automation.get("trigger")
                })

            for automation in automations:
                raw=automation.get("raw") or {}
                builder=results[automation["id"]]
                builder.input=[resolve_input_for_read(self.db_path,ref,home_id,app_code,candidates) for ref in raw.get("input") or []]
                builder.output=[resolve_output_for_read(self.db_path,ref,home_id,app_code,candidates) for ref in raw.get("output") or []]

            return buildResult(200,[builder.build() for builder in results.values()])
        except Exception:
            logger.exception("get_automations:error")
            return buildError(400,ErrorCode.NSERR_UNKNOWN)
    #endregion

    #region Create
    def create_automation(self,automation_in:Automation_In):
        param=automation_in
        inputs=dump_references(param.input)
        outputs=dump_references(param.output)
        trigger=param.trigger.model_dump()
        try:
            user=get_user_by_id(self.db_path,param.userId)
            if user is None:
                return buildError(404,ErrorCode.NSERR_USERNOTFOUND)

            home=get_home_of_user(self.db_path,param.homeId,param.userId,param.appCode)
            if home is None:
                return buildError(404,ErrorCode.NSERR_HOMENOTFOUND)

            hc_info={}
            if is_in_hc(param.hcId):
                hc_info=get_device_with_area(self.db_path,param.hcId,param.homeId,param.userId,param.appCode) or {}
            logger.info(f"create_automation:isInHC {is_in_hc(param.hcId)}")

            resolved_inputs=resolve_inputs(self.db_path,inputs,param.homeId,param.userId,param.appCode,param.hcId)
            if not resolved_inputs.ok:
                logger.info(f"create_automation:input failures {resolved_inputs.failure_list()}")
                return buildError(404,ErrorCode.NSERR_ENTITYNOTFOUND,resolved_inputs.failure_list())

            resolved_outputs=resolve_outputs(self.db_path,outputs,param.homeId,param.userId,param.appCode,param.hcId)
            if not resolved_outputs.ok:
                logger.info(f"create_automation:output failures {resolved_outputs.failure_list()}")
                return buildError(404,ErrorCode.NSERR_ENTITYNOTFOUND,resolved_outputs.failure_list())

            automation_id=self.rule_engine.create({
                "name":param.name,
                "homeId":param.homeId,
                "hcId":param.hcId,
                "processedAt":param.processedAt,
                "logo":param.logo,
                "type":param.type,
                "logic":param.logic,
                "active":param.active,
                "trigger":trigger,
                "input":inputs,
                "output":outputs
            })
            logger.info(f"create_automation:autoId {automation_id}")

            if automation_id is None:
                return buildError(400,ErrorCode.NSERR_UNKNOWN)

            automation={
                "id":automation_id,
                "homeId":param.homeId,
                "userId":param.userId,
                "hcId":param.hcId,
                "hcInfo":hc_info,
                "appCode":param.appCode,
                "GMT":param.timezone,
                "logic":param.logic,
                "name":param.name,
                "logo":param.logo,
                "position":param.pos if param.pos is not None else -1,
                "type":param.type,
                "active":param.active,
                "trigger":trigger,
                "inputIds":resolved_inputs.ids,
                "outputIds":resolved_outputs.ids,
                "raw":{
                    "id":automation_id,
                    "hc":param.hcId,
                    "name":param.name,
                    "type":param.type,
                    "timezone":param.timezone,
                    "processedAt":param.processedAt,
                    "logic":param.logic,
                    "active":param.active,
                    "trigger":trigger,
                    "input":inputs,
                    "output":outputs
                }
            }

            try:
                with get_db_transaction(self.db_path) as con:
                    insert_automation(con,automation,now_timestamp(),param.userId)
                    con.commit()
            except Exception:
                # the rule exists only on the engine now, take it back
                logger.exception(f"create_automation:insert failed, removing rule {automation_id}")
                if self.rule_engine.delete(automation_id) is None:
                    logger.error(f"create_automation:rule {automation_id} could not be removed from the engine")
                return buildError(400,ErrorCode.NSERR_UNKNOWN)

            self.log_event(param.userId,"Create automation",automation_id,automation["raw"])
            return buildResult(201,{**automation,"input":resolved_inputs.records,"output":resolved_outputs.records})
        except Exception:
            logger.exception("create_automation:error")
            return buildError(400,ErrorCode.NSERR_UNKNOWN)
    #endregion

    #region Update
    def update_automation(self,automation_update:Automation_Update):
        '''
        The rule engine is updated first, under the automation lock; the local
        row is written only once the engine accepted the new definition.
        '''
        param=automation_update
        resource=lock_resource(param.id,param.userId,param.homeId,param.appCode)
        with self.semaphore.hold(resource,self.lock_timeout) as acquired:
            if not acquired:
                return buildError(409,ErrorCode.NSERR_AUTOMATIONBUSY)
            try:
                existing=get_automation(self.db_path,param.id,param.homeId,param.appCode)
                if existing is None:
                    return buildError(404,ErrorCode.NSERR_AUTOMATIONNOTFOUND)

                if existing.get("createdBy")!=param.userId:
                    return buildError(401,ErrorCode.NSERR_AUTOMATIONCOULDNOTBECHANGED)

                update=param.model_dump(exclude={"input","output","trigger"})
                update["trigger"]=param.trigger.model_dump() if param.trigger is not None else None
                update["input"]=dump_references(param.input)
                update["output"]=dump_references(param.output)

                changes=compute_changes(self.db_path,existing,update)
                if changes.failures:
                    failures=[f.to_dict() for f in changes.failures]
                    logger.info(f"update_automation:reference failures {failures}")
                    return buildError(404,ErrorCode.NSERR_ENTITYNOTFOUND,failures)

                if not changes.is_changed:
                    return buildError(400,ErrorCode.NSERR_NOTHINGTOBECHANGED)

                automation=changes.automation
                logger.info(f"update_automation:changedStatus {changes.needs_remote_sync}")
                if changes.needs_remote_sync:
                    if self.rule_engine.update(build_definition(automation)) is None:
                        logger.error(f"update_automation:rule engine did not accept the update of {param.id}")
                        return buildError(400,ErrorCode.NSERR_NOTHINGTOBECHANGED)

                try:
                    with get_db_transaction(self.db_path) as con:
                        update_automation(con,automation,now_timestamp(),param.userId)
                        con.commit()
                except Exception:
                    # the engine already runs the new definition, put the stored one back
                    logger.exception(f"update_automation:local write failed, restoring rule {param.id}")
                    if changes.needs_remote_sync and self.rule_engine.update(build_definition(existing)) is None:
                        logger.error(f"update_automation:rule {param.id} could not be restored on the engine")
                    return buildError(400,ErrorCode.NSERR_UNKNOWN)

                self.log_event(param.userId,"Update automation",param.id,automation["raw"])
                return buildResult(200,automation)
            except Exception:
                logger.exception("update_automation:error")
                return buildError(400,ErrorCode.NSERR_UNKNOWN)
    #endregion

    #region Delete
    def delete_automation(self,automation_delete:Automation_Delete):
        param=automation_delete
        resource=lock_resource(param.id,param.userId,param.homeId,param.appCode)
        with self.semaphore.hold(resource,self.lock_timeout) as acquired:
            if not acquired:
                return buildError(409,ErrorCode.NSERR_AUTOMATIONBUSY)
            try:
                existing=get_automation(self.db_path,param.id,param.homeId,param.appCode)
                if existing is None:
                    return buildError(404,ErrorCode.NSERR_AUTOMATIONNOTFOUND)

                if existing.get("createdBy")!=param.userId:
                    return buildError(401,ErrorCode.NSERR_AUTOMATIONCOULDNOTBECHANGED)

                if self.rule_engine.delete(existing["id"]) is None:
                    logger.error(f"delete_automation:rule engine could not delete {existing['id']}")
                    return buildError(400,ErrorCode.NSERR_AUTOMATIONCOULDNOTBEDELETED)

                # a failure here is retried by the caller, the engine then answers 404 for the rule
                with get_db_transaction(self.db_path) as con:
                    delete_automation(con,existing["id"],param.homeId,param.appCode)
                    con.commit()

                self.log_event(param.userId,"Delete automation",param.id,{"homeId":param.homeId,"appCode":param.appCode})
                return buildResult(200,{"message":"Automation has been deleted"})
            except Exception:
                logger.exception("delete_automation:error")
                return buildError(400,ErrorCode.NSERR_UNKNOWN)
    #endregion

    #region Cascades
    def acquire_automations(self,automations:list[dict],home_id:str,app_code:str,held:list[str]) -> bool:
        '''
        Takes the update lock of every automation in id order and records it in
        held. Returns False at the first lock that could not be taken in time.
        '''
        for automation in sorted(automations,key=lambda x:x["id"]):
            resource=lock_resource(automation["id"],automation.get("createdBy"),home_id,app_code)
            if resource in held:
                continue
            if not self.semaphore.acquire(resource,self.lock_timeout):
                return False
            held.append(resource)
        return True

    def delete_home(self,home_delete:Home_Delete):
        '''
        Removes a home. The owner removes it for everybody, after its
        automations were deleted from the rule engine; a member only leaves it.
        '''
        param=home_delete
        held=[]
        try:
            home=get_home_of_user(self.db_path,param.id,param.userId,param.appCode)
            if home is None:
                return buildError(404,ErrorCode.NSERR_HOMENOTFOUND)

            if home.get("isOwner"):
                automations=get_automations_of_home(self.db_path,param.id,param.appCode)
                if not self.acquire_automations(automations,param.id,param.appCode,held):
                    return buildError(409,ErrorCode.NSERR_AUTOMATIONBUSY)

                failed=[a["id"] for a in automations if self.rule_engine.delete(a["id"]) is None]
                if failed:
                    logger.error(f"delete_home:automations not deleted {failed}")
                    return buildError(400,ErrorCode.NSERR_AUTOMATIONCOULDNOTBEDELETED,failed)

                with get_db_transaction(self.db_path) as con:
                    delete_home_as_owner(con,param.id,param.appCode)
                    con.commit()
                message="You have deleted home as owner"
            else:
                with get_db_transaction(self.db_path) as con:
                    delete_home_as_member(con,param.id,param.userId,param.appCode)
                    con.commit()
                message="You have left the home"

            self.log_event(param.userId,"Delete home",param.id,{"appCode":param.appCode,"owner":bool(home.get("isOwner"))})
            return buildResult(200,{"message":message})
        except Exception:
            logger.exception("delete_home:error")
            return buildError(400,ErrorCode.NSERR_UNKNOWN)
        finally:
            for resource in held:
                self.semaphore.release(resource)

    def delete_entity(self,entity_delete:Entity_Delete):
        '''
        Deletes a device. When the home owner deletes it, the rule engine
        detaches it from every rule and those automations are deactivated
        while their locks are held.
        '''
        param=entity_delete
        held=[]
        try:
            home_owner=get_home_owner(self.db_path,param.homeId,param.appCode)
            is_owner=home_owner is not None and home_owner["userId"]==param.userId
            scope_user=None if is_owner else param.userId

            devices=get_device_for_deletion(self.db_path,param.id,param.homeId,param.appCode,scope_user)
            if not devices:
                return buildError(404,ErrorCode.NSERR_ENTITYNOTFOUND)

            detached=[]
            if is_owner:
                using=search_automations(self.db_path,param.homeId,param.appCode,input_id=param.id)
                using+=search_automations(self.db_path,param.homeId,param.appCode,output_id=param.id)
                if not self.acquire_automations(using,param.homeId,param.appCode,held):
                    return buildError(409,ErrorCode.NSERR_AUTOMATIONBUSY)

                detached=self.rule_engine.delete_device(param.id)
                if detached is None:
                    logger.error(f"delete_entity:rule engine could not detach {param.id}")
                    return buildError(400,ErrorCode.NSERR_ENTITYCOULDNOTBEDELETED)
                logger.info(f"delete_entity:automations detached {detached}")

                known=[get_automation(self.db_path,automation_id,param.homeId,param.appCode) for automation_id in detached]
                if not self.acquire_automations([a for a in known if a],param.homeId,param.appCode,held):
                    logger.error(f"delete_entity:automations {detached} are busy, {param.id} is detached on the engine only")
                    return buildError(409,ErrorCode.NSERR_AUTOMATIONBUSY)

            with get_db_transaction(self.db_path) as con:
                delete_device(con,param.id,param.homeId,param.appCode,scope_user)
                deactivate_automations(con,detached,param.homeId,param.appCode,now_timestamp(),param.userId)
                con.commit()

            self.log_event(param.userId,"Delete entity",param.id,{"homeId":param.homeId,"automations":detached})
            return buildResult(200,{"message":"Entity has been deleted","data":detached})
        except Exception:
            logger.exception("delete_entity:error")
            return buildError(400,ErrorCode.NSERR_UNKNOWN)
        finally:
            for resource in held:
                self.semaphore.release(resource)
    #endregion
