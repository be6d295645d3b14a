#region Import
import copy,logging
from database_functions import (
    get_device_with_area,get_devices_of_candidates,
    get_area,get_scene,get_scenes_of_candidates
    )
from classes import ErrorCode,ReferenceFailure,ResolvedReferences,ChangeSet
#endregion

logger = logging.getLogger(__name__)

#region Topology
def is_present(value) -> bool:
    return value is not None and value!=""

def is_in_hc(hc_id) -> bool:
    '''True when the automation runs on a hub controller.'''
    return is_present(hc_id)

def is_entity_suitable(device:dict,hc_id) -> bool:
    '''
    A device can be wired into an automation only if both live on the same
    hub controller, or if neither is attached to one.
    '''
    in_hc=is_in_hc(hc_id)
    has_parent=is_present(device.get("parentId"))

    if in_hc and has_parent and hc_id!=device.get("parentId"):
        return False
    if in_hc and not has_parent:
        return False
    if not in_hc and has_parent:
        return False
    return True

#endregion

#region Write path resolution
def resolve_inputs(db_path:str,inputs:list[dict],home_id:str,user_id:str,app_code:str,hc_id) -> ResolvedReferences:
    '''
    Validates every input reference and hydrates it with the device record.
    All references are checked, failures are collected rather than raised.
    A device listed more than once is resolved and reported once.
    '''
    resolved=ResolvedReferences()
    seen=set()
    for reference in inputs or []:
        if reference.get("id") in seen:
            continue
        seen.add(reference.get("id"))
        device=get_device_with_area(db_path,reference.get("id"),home_id,user_id,app_code)
        logger.debug(f"resolve_inputs:device {device}")

        if device is None:
            resolved.failures.append(ReferenceFailure(id=reference.get("id"),code=ErrorCode.NSERR_ENTITYNOTFOUND))
            continue

        if not is_entity_suitable(device,hc_id):
            resolved.failures.append(ReferenceFailure(id=reference.get("id"),code=ErrorCode.NSERR_AUTOMATIONENTITYINPUTNOTSUITABLE))
            continue

        device.update({
            "state":dict(reference.get("state") or {}),
            "operator":dict(reference.get("operator") or {})
        })
        resolved.records.append(device)
        resolved.ids.append(reference.get("id"))
    return resolved

def resolve_outputs(db_path:str,outputs:list[dict],home_id:str,user_id:str,app_code:str,hc_id) -> ResolvedReferences:
    '''
    Same contract as resolve_inputs for outputs. Scenes must be automations of
    the same user, notices are free payloads and are never looked up.
    '''
    resolved=ResolvedReferences()
    seen=set()
    for reference in outputs or []:
        output_type=reference.get("type")
        if output_type in ["scene","device"]:
            if (output_type,reference.get("id")) in seen:
                continue
            seen.add((output_type,reference.get("id")))

        if output_type=="scene":
            scene=get_scene(db_path,reference.get("id"),user_id,home_id,app_code)
            if scene is None:
                resolved.failures.append(ReferenceFailure(id=reference.get("id"),code=ErrorCode.NSERR_AUTOMATIONNOTFOUND))
                continue
            resolved.records.append({
                "id":scene["id"],
                "name":scene["name"],
                "type":output_type,
                "state":reference.get("state"),
                "delay":reference.get("delay")
            })
            resolved.ids.append(reference.get("id"))

        elif output_type=="device":
            device=get_device_with_area(db_path,reference.get("id"),home_id,user_id,app_code)
            logger.debug(f"resolve_outputs:device {device}")

            if device is None:
                resolved.failures.append(ReferenceFailure(id=reference.get("id"),code=ErrorCode.NSERR_ENTITYNOTFOUND))
                continue

            if not is_entity_suitable(device,hc_id):
                resolved.failures.append(ReferenceFailure(id=reference.get("id"),code=ErrorCode.NSERR_AUTOMATIONENTITYOUTPUTNOTSUITABLE))
                continue

            device.update({
                "type":output_type,
                "state":dict(reference.get("state") or {}),
                "delay":reference.get("delay")
            })
            resolved.records.append(device)
            resolved.ids.append(reference.get("id"))

        elif output_type=="notice":
            notice=dict(reference)
            notice.update({"type":output_type,"delay":reference.get("delay")})
            resolved.records.append(notice)

        else:
            raise ValueError(f"Unknown output type {output_type}")
    return resolved

#endregion

#region Read path resolution
def pick_candidate(records:list[dict],candidates:list[str]):
    '''First record owned by the earliest candidate user.'''
    for user_id in candidates:
        for record in records:
            if user_id and record.get("userId")==user_id:
                return record
    return None

def hydrate_device_for_read(db_path:str,reference:dict,home_id:str,app_code:str,candidates:list[str]):
    devices=get_devices_of_candidates(db_path,reference.get("id"),home_id,app_code,candidates)
    device=pick_candidate(devices,candidates)
    if device is None:
        return None
    area=get_area(db_path,device.get("areaId"),device.get("userId"),device.get("homeId"),app_code)
    device["areaName"]=area["name"] if area else None
    return device

def resolve_input_for_read(db_path:str,reference:dict,home_id:str,app_code:str,candidates:list[str]) -> dict:
    device=hydrate_device_for_read(db_path,reference,home_id,app_code,candidates)
    if device is None:
        return {**reference,"deleted":True}
    device.update({
        "state":reference.get("state"),
        "operator":reference.get("operator"),
        "deleted":False
    })
    return device

def resolve_output_for_read(db_path:str,reference:dict,home_id:str,app_code:str,candidates:list[str]) -> dict:
    output_type=reference.get("type")

    if output_type=="notice":
        return {**reference,"deleted":False}

    if output_type=="scene":
        scenes=get_scenes_of_candidates(db_path,reference.get("id"),home_id,app_code,candidates)
        scene=pick_candidate(scenes,candidates)
        if scene is None:
            return {**reference,"deleted":True}
        return {
            "id":scene["id"],
            "name":scene["name"],
            "type":output_type,
            "state":reference.get("state"),
            "delay":reference.get("delay"),
            "deleted":False
        }

    device=hydrate_device_for_read(db_path,reference,home_id,app_code,candidates)
    if device is None:
        return {**reference,"deleted":True}
    device.update({
        "type":output_type,
        "state":reference.get("state"),
        "delay":reference.get("delay"),
        "deleted":False
    })
    return device

#endregion

#region Change set
def sort_by_id(references:list[dict] | None) -> list[dict]:
    return sorted(references or [],key=lambda x:str(x.get("id") or ""))

def trigger_window(trigger:dict | None) -> dict:
    configuration=(trigger or {}).get("configuration") or {}
    return {"start":configuration.get("start"),"end":configuration.get("end")}

def compute_changes(db_path:str,existing:dict,update:dict) -> ChangeSet:
    '''
    Applies the submitted fields of an update on top of the stored automation.

    Every field is compared with the stored value and only counts when it is
    present, non-empty and different. Inputs and outputs are compared sorted by
    id and are validated again only when they differ. A changed "name" is
    written to "logic"; the name itself is left as stored.

    The returned ChangeSet carries the new automation row, which flags were
    raised, and the reference failures if the new inputs or outputs were
    rejected (in that case nothing else in it should be used).
    '''
    automation=copy.deepcopy(existing)
    changes=ChangeSet(automation=automation)
    raw=copy.deepcopy(existing.get("raw") or {})
    hc_id=existing.get("hcId")

    if is_present(update.get("timezone")) and existing.get("GMT")!=update["timezone"]:
        changes.is_changed=True
        automation["GMT"]=update["timezone"]

    if is_present(update.get("name")) and existing.get("name")!=update["name"]:
        changes.is_changed=True
        automation["logic"]=update["name"]

    if is_present(update.get("type")) and existing.get("type")!=update["type"]:
        changes.is_changed=True
        automation["type"]=update["type"]

    if is_present(update.get("logo")) and existing.get("logo")!=update["logo"]:
        changes.is_changed=True
        automation["logo"]=update["logo"]

    if is_present(update.get("pos")) and existing.get("position")!=update["pos"]:
        changes.is_changed=True
        automation["position"]=update["pos"]

    if is_present(update.get("logic")) and existing.get("logic")!=update["logic"]:
        changes.is_changed=True
        changes.is_logic_change=True
        automation["logic"]=update["logic"]

    if is_present(update.get("active")) and existing.get("active")!=update["active"]:
        changes.is_changed=True
        changes.is_active_change=True
        automation["active"]=update["active"]

    if is_present(update.get("trigger")):
        stored_window=trigger_window(existing.get("trigger"))
        new_window=trigger_window(update["trigger"])
        logger.debug(f"compute_changes:trigger {stored_window} -> {new_window}")
        if stored_window!=new_window:
            changes.is_changed=True
            changes.is_trigger_change=True
            automation["trigger"]=copy.deepcopy(update["trigger"])

    if update.get("input") is not None:
        stored_input=sort_by_id(raw.get("input"))
        new_input=sort_by_id(update["input"])
        if stored_input!=new_input:
            resolved=resolve_inputs(db_path,new_input,existing.get("homeId"),update.get("userId"),existing.get("appCode"),hc_id)
            if not resolved.ok:
                changes.failures=resolved.failures
                return changes
            changes.is_changed=True
            changes.is_input_change=True
            automation["inputIds"]=list(resolved.ids)
            raw["input"]=new_input

    if update.get("output") is not None:
        stored_output=sort_by_id(raw.get("output"))
        new_output=sort_by_id(update["output"])
        if stored_output!=new_output:
            resolved=resolve_outputs(db_path,new_output,existing.get("homeId"),update.get("userId"),existing.get("appCode"),hc_id)
            if not resolved.ok:
                changes.failures=resolved.failures
                return changes
            changes.is_changed=True
            changes.is_output_change=True
            automation["outputIds"]=list(resolved.ids)
            raw["output"]=new_output

    if changes.is_changed:
        raw.update({
            "name":automation.get("name"),
            "type":automation.get("type"),
            "logic":automation.get("logic"),
            "active":automation.get("active"),
            "timezone":automation.get("GMT"),
            "trigger":automation.get("trigger")
        })
        automation["raw"]=raw

    return changes

def build_definition(automation:dict) -> dict:
    '''Rule engine definition of a stored automation.'''
    raw=automation.get("raw") or {}
    return {
        "id":automation.get("id"),
        "name":automation.get("name"),
        "homeId":automation.get("homeId"),
        "hcId":automation.get("hcId"),
        "processedAt":raw.get("processedAt"),
        "logo":automation.get("logo"),
        "type":automation.get("type"),
        "logic":automation.get("logic"),
        "active":automation.get("active"),
        "trigger":automation.get("trigger"),
        "input":raw.get("input") or [],
        "output":raw.get("output") or []
    }

#endregion
