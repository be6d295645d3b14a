from dataclasses import dataclass,asdict,field
from enum import StrEnum
from typing import List


class ErrorCode(StrEnum):
    NSERR_UNKNOWN="NSERR_UNKNOWN"
    NSERR_USERNOTFOUND="NSERR_USERNOTFOUND"
    NSERR_HOMENOTFOUND="NSERR_HOMENOTFOUND"
    NSERR_ENTITYNOTFOUND="NSERR_ENTITYNOTFOUND"
    NSERR_ENTITYCOULDNOTBEDELETED="NSERR_ENTITYCOULDNOTBEDELETED"
    NSERR_AUTOMATIONNOTFOUND="NSERR_AUTOMATIONNOTFOUND"
    NSERR_AUTOMATIONCOULDNOTBECHANGED="NSERR_AUTOMATIONCOULDNOTBECHANGED"
    NSERR_AUTOMATIONCOULDNOTBEDELETED="NSERR_AUTOMATIONCOULDNOTBEDELETED"
    NSERR_AUTOMATIONENTITYINPUTNOTSUITABLE="NSERR_AUTOMATIONENTITYINPUTNOTSUITABLE"
    NSERR_AUTOMATIONENTITYOUTPUTNOTSUITABLE="NSERR_AUTOMATIONENTITYOUTPUTNOTSUITABLE"
    NSERR_AUTOMATIONBUSY="NSERR_AUTOMATIONBUSY"
    NSERR_NOTHINGTOBECHANGED="NSERR_NOTHINGTOBECHANGED"


@dataclass
class Result:
    def to_dict(self) -> dict:
        return asdict(self)

@dataclass
class ReferenceFailure(Result):
    id:str=''
    code:str=ErrorCode.NSERR_ENTITYNOTFOUND

@dataclass
class ResolvedReferences(Result):
    '''Outcome of validating and hydrating a batch of input or output references.'''
    records:List[dict]=field(default_factory=list)
    ids:List[str]=field(default_factory=list)
    failures:List[ReferenceFailure]=field(default_factory=list)

    @property
    def ok(self) -> bool:
        return len(self.failures)==0

    def failure_list(self) -> list[dict]:
        return [f.to_dict() for f in self.failures]


@dataclass
class ChangeSet(Result):
    automation:dict=field(default_factory=dict)
    is_changed:bool=False
    is_logic_change:bool=False
    is_active_change:bool=False
    is_trigger_change:bool=False
    is_input_change:bool=False
    is_output_change:bool=False
    failures:List[ReferenceFailure]=field(default_factory=list)

    @property
    def needs_remote_sync(self) -> bool:
        return (self.is_logic_change or self.is_active_change or self.is_trigger_change
                or self.is_input_change or self.is_output_change)


@dataclass
class AutomationBuilder(Result):
    '''
    Collects the read view of one automation. Header fields, inputs and outputs
    are resolved separately and only merged by build().
    '''
    header:dict=field(default_factory=dict)
    input:list=field(default_factory=list)
    output:list=field(default_factory=list)

    def build(self) -> dict:
        out=dict(self.header)
        out.update({
            "input":list(self.input),
            "output":list(self.output)
        })
        return out
