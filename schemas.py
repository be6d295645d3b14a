from typing import Annotated, Literal, Union
from pydantic import BaseModel, ConfigDict, Field


class Trigger_Configuration(BaseModel):
    start:str | None = None
    end:str | None = None

class Trigger(BaseModel):
    type:str | None = None
    configuration:Trigger_Configuration = Field(default_factory=Trigger_Configuration)


class Input_Reference(BaseModel):
    id:str = Field(max_length=128)
    state:dict = Field(default_factory=dict)
    operator:dict = Field(default_factory=dict)

class Device_Output(BaseModel):
    type:Literal["device"]
    id:str = Field(max_length=128)
    state:dict = Field(default_factory=dict)
    delay:int | None = None

class Scene_Output(BaseModel):
    type:Literal["scene"]
    id:str = Field(max_length=128)
    state:dict | str | bool | None = None
    delay:int | None = None

class Notice_Output(BaseModel):
    model_config = ConfigDict(extra="allow")
    type:Literal["notice"]
    id:str | None = None
    delay:int | None = None

Output_Reference = Annotated[Union[Device_Output,Scene_Output,Notice_Output],Field(discriminator="type")]


class Automation_In(BaseModel):
    homeId:str = Field(max_length=128)
    userId:str = Field(max_length=128)
    appCode:str = Field(max_length=256)
    name:str = Field(max_length=256)
    type:str = Field(max_length=32)
    logic:Literal["and","or"]
    active:bool
    logo:str | None = Field(default=None,max_length=128)
    pos:int | None = Field(default=None,ge=-1,le=127)
    hcId:str | None = Field(default=None,max_length=128)
    timezone:str | None = None
    processedAt:str | None = None
    trigger:Trigger
    input:list[Input_Reference]
    output:list[Output_Reference]

class Automation_Update(BaseModel):
    id:str = Field(max_length=128)
    homeId:str = Field(max_length=128)
    userId:str = Field(max_length=128)
    appCode:str = Field(max_length=256)
    name:str | None = Field(default=None,max_length=256)
    type:str | None = Field(default=None,max_length=32)
    logic:Literal["and","or"] | None = None
    active:bool | None = None
    logo:str | None = Field(default=None,max_length=128)
    pos:int | None = Field(default=None,ge=-1,le=127)
    timezone:str | None = None
    trigger:Trigger | None = None
    input:list[Input_Reference] | None = None
    output:list[Output_Reference] | None = None

class Automation_Delete(BaseModel):
    id:str = Field(max_length=128)
    homeId:str = Field(max_length=128)
    userId:str = Field(max_length=128)
    appCode:str = Field(max_length=256)


class Home_Delete(BaseModel):
    id:str = Field(max_length=128)
    userId:str = Field(max_length=128)
    appCode:str = Field(max_length=256)

class Entity_Delete(BaseModel):
    id:str = Field(max_length=128)
    homeId:str = Field(max_length=128)
    userId:str = Field(max_length=128)
    appCode:str = Field(max_length=256)


def dump_references(references:list[BaseModel] | None) -> list[dict] | None:
    '''Plain dictionaries of the references, in the form stored in the automation raw copy.'''
    if references is None:
        return None
    return [r.model_dump(exclude_none=True) for r in references]
