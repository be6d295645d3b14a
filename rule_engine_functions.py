import json,logging
import requests

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL="http://localhost:8080/rule"
DEFAULT_TIMEOUT=10


def build_rule_body(definition:dict) -> dict:
    '''
    Converts an automation definition into the payload the rule engine expects.
    The home becomes the engine "spaceId", an empty hub id is left out and a
    trigger without an end time ends when it starts.
    '''
    trigger=definition.get("trigger") or {}
    configuration=trigger.get("configuration") or {}

    body={
        "name":definition.get("name"),
        "spaceId":definition.get("homeId"),
        "HCId":definition.get("hcId"),
        "processedAt":definition.get("processedAt"),
        "logo":definition.get("logo"),
        "type":definition.get("type"),
        "logic":definition.get("logic"),
        "active":definition.get("active"),
        "trigger":{
            "type":trigger.get("type"),
            "configuration":{
                "start":configuration.get("start"),
                "end":configuration.get("end")
            }
        },
        "input":list(definition.get("input") or []),
        "output":list(definition.get("output") or [])
    }

    if body["HCId"] in ["",None]:
        body.pop("HCId")

    if "end" not in configuration or configuration.get("end") is None:
        body["trigger"]["configuration"]["end"]=body["trigger"]["configuration"]["start"]

    return body


class RuleEngineClient:
    '''
    Client of the remote rule-execution service, which owns the authoritative
    automation definitions. No method raises: any failure returns None and the
    caller decides how to roll back.
    '''

    def __init__(self,base_url:str=DEFAULT_BASE_URL,timeout:float=DEFAULT_TIMEOUT,session:requests.Session|None=None):
        self.base_url=base_url.rstrip("/")
        self.timeout=timeout
        self.session=session or requests.Session()
        self.headers={"content-type":"application/json"}

    def create(self,definition:dict):
        '''Registers a new rule. Returns the id assigned by the engine.'''
        url=f"{self.base_url}/v1/rule/"
        body=build_rule_body(definition)
        logger.info(f"createRule:url {url}")
        logger.debug(f"createRule:request:body {json.dumps(body)}")
        try:
            response=self.session.post(url,json=body,headers=self.headers,timeout=self.timeout)
            if response.status_code not in [200,201]:
                logger.error(f"createRule:response {response.status_code} {response.text}")
                return None
            data=response.json()
            logger.debug(f"createRule:response:data {json.dumps(data)}")
            if isinstance(data,dict) and data.get("id"):
                return str(data["id"])
            return None
        except (requests.RequestException,ValueError) as e:
            logger.error(f"createRule:error {e}")
            return None

    def update(self,definition:dict):
        url=f"{self.base_url}/v1/rule/{definition.get('id')}"
        body=build_rule_body(definition)
        logger.info(f"updateRule:url {url}")
        logger.debug(f"updateRule:request:body {json.dumps(body)}")
        try:
            response=self.session.put(url,json=body,headers=self.headers,timeout=self.timeout)
            if not 200<=response.status_code<300:
                logger.error(f"updateRule:response {response.status_code} {response.text}")
                return None
            logger.debug(f"updateRule:response:data {response.text}")
            return True
        except requests.RequestException as e:
            logger.error(f"updateRule:error {e}")
            return None

    def delete(self,automation_id:str):
        '''Deletes a rule. A rule the engine does not know counts as deleted.'''
        return self._delete(f"{self.base_url}/v1/rule/{automation_id}","deleteRule")

    def delete_device(self,device_id:str):
        '''
        Detaches a device from every rule using it.
        Returns the ids of the rules the engine touched.
        '''
        return self._delete(f"{self.base_url}/v1/rule/devices/{device_id}","deleteDevice")

    def _delete(self,url:str,resource:str):
        logger.info(f"{resource}:url {url}")
        try:
            response=self.session.delete(url,headers=self.headers,timeout=self.timeout)
            if response.status_code==404:
                logger.info(f"{resource}:response 404, nothing to delete")
                return []
            if not 200<=response.status_code<300:
                logger.error(f"{resource}:response {response.status_code} {response.text}")
                return None
            logger.debug(f"{resource}:response:data {response.text}")
            if not response.content:
                return []
            data=response.json()
            return data if isinstance(data,list) else []
        except (requests.RequestException,ValueError) as e:
            logger.error(f"{resource}:error {e}")
            return None
