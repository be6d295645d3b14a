from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from routers.automationRouter import getAutomationRouter
from routers.homeRouter import getHomeRouter
from routers.entityRouter import getEntityRouter

from automation_service import AutomationService
from rule_engine_functions import RuleEngineClient
from semaphore_functions import Semaphore
from database_functions import DbPathEnum,initialize_database,get_configuration_value_by_key,add_log,now_timestamp
import logging,uvicorn


def configure_logging(level:str="info"):
    # Uvicorn-like format, "levelprefix" needs uvicorn's formatter
    logging.basicConfig(
        level=level.upper(),
        format="%(levelprefix)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True
    )
    logging.getLogger().handlers[0].setFormatter(uvicorn.logging.DefaultFormatter("%(levelprefix)s %(message)s"))


def build_service(db_path:str=DbPathEnum.HOME,logs_db_path:str=DbPathEnum.LOGS,
                  rule_engine:RuleEngineClient|None=None,semaphore:Semaphore|None=None) -> AutomationService:
    if rule_engine is None:
        url=get_configuration_value_by_key(db_path,"rule_engine_url")
        timeout=get_configuration_value_by_key(db_path,"rule_engine_timeout")
        rule_engine=RuleEngineClient(url["value"] or "http://localhost:8080/rule",float(timeout["value"] or 10))

    lock_timeout=get_configuration_value_by_key(db_path,"lock_timeout")
    lock_timeout=float(lock_timeout["value"] or 30)

    return AutomationService(db_path,rule_engine,semaphore or Semaphore(),lock_timeout,logs_db_path)


def create_api(service:AutomationService):
    api=FastAPI(title="Home Service API",docs_url="/")

    routers=[
        getAutomationRouter(service),
        getHomeRouter(service),
        getEntityRouter(service),
    ]

    for router in routers:
        api.include_router(router)

    api.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    )

    return api


def main():
    initialize_database()

    log_level=get_configuration_value_by_key(DbPathEnum.HOME,"log_level")
    log_level=log_level["value"] or "info"
    configure_logging(log_level)
    logger = logging.getLogger(__name__)

    host=get_configuration_value_by_key(DbPathEnum.HOME,"host")
    host=host["value"] or "0.0.0.0"

    port=get_configuration_value_by_key(DbPathEnum.HOME,"port")
    port=int(port["value"] or 8000)

    service=build_service()
    logger.info(f"Rule engine at {service.rule_engine.base_url}")

    api = create_api(service)
    add_log([("System","Startup","HomeService","{}",now_timestamp())])
    uvicorn.run(api, host=host,port=port,log_level=log_level)

if __name__ == "__main__":
    main()
