from __future__ import annotations

from typing import List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, TypeAdapter

# Evaluator output. Enum values are externally tagged: a unit variant is its
# name as a string, any other variant a single-key object.


class LocationDTO(BaseModel):
    file: str
    line: int
    column: int


class ManualDefinitionDTO(BaseModel):
    is_semantic_call_package: bool


class ManualDefinitionTagDTO(BaseModel):
    ManualDefinition: ManualDefinitionDTO


DefinitionVariantDTO = Union[Literal["AutoDefinition"], ManualDefinitionTagDTO]


class AttributeSetDTO(BaseModel):
    is_derivation: bool
    definition_variant: DefinitionVariantDTO


class AttributeSetTagDTO(BaseModel):
    AttributeSet: AttributeSetDTO


AttributeVariantDTO = Union[Literal["NonAttributeSet"], AttributeSetTagDTO]


class AttributeInfoDTO(BaseModel):
    location: Optional[LocationDTO] = None
    attribute_variant: AttributeVariantDTO


class ExistingTagDTO(BaseModel):
    Existing: AttributeInfoDTO


class EvalSuccessTagDTO(BaseModel):
    EvalSuccess: AttributeInfoDTO


class ByNameTagDTO(BaseModel):
    ByName: Union[Literal["Missing"], ExistingTagDTO]


class NonByNameTagDTO(BaseModel):
    NonByName: Union[Literal["EvalFailure"], EvalSuccessTagDTO]


AttributeDTO = Union[ByNameTagDTO, NonByNameTagDTO]

EVAL_OUTPUT = TypeAdapter(List[Tuple[str, AttributeDTO]])
