from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, Field, ValidationError, field_validator

from compass_agent.domain.models.persona import normalize_persona_number
from compass_agent.domain.tool.calculator import CalculationType


class CustomerToolInput(BaseModel):
    customer_number: str = Field(min_length=1, description="Public customer number, e.g. CUST-001")

    @field_validator("customer_number")
    @classmethod
    def _normalise_number(cls, value: str) -> str:
        return normalize_persona_number(value) or value


class CustomerInteractionsInput(CustomerToolInput):
    limit: int = Field(10, ge=1, le=50)


class AdvisorToolInput(BaseModel):
    advisor_number: str = Field(min_length=1, description="Public advisor number, e.g. ADV-001")

    @field_validator("advisor_number")
    @classmethod
    def _normalise_number(cls, value: str) -> str:
        return normalize_persona_number(value) or value


class AdvisorTasksInput(AdvisorToolInput):
    status: Optional[Literal["open", "in_progress", "completed", "cancelled"]] = None
    priority: Optional[Literal["low", "medium", "high", "urgent"]] = None


class RecommendAdvisorsInput(BaseModel):
    specialization: Optional[str] = None
    limit: int = Field(5, ge=1, le=20)


class SearchDocumentsInput(BaseModel):
    query: str = Field(min_length=1)
    category: Optional[str] = None


class HybridSearchInput(BaseModel):
    query: str = Field(min_length=1)
    limit: int = Field(5, ge=1, le=20)


class GraphSearchInput(BaseModel):
    query: str = Field(min_length=1)


class CalculatorInput(BaseModel):
    expression: str = Field(min_length=1, max_length=200)
    calculation_type: CalculationType = "basic"
    variables: Dict[str, float] = Field(default_factory=dict)


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    parameters: Optional[BaseModel] = None


class ToolParameterValidator:
    """Validates raw tool arguments against the tool's input model"""

    @staticmethod
    def validate_tool_call(input_model: Type[BaseModel], parameters: Dict[str, Any]) -> ValidationResult:
        try:
            validated = input_model.model_validate(parameters)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(part) for part in error['loc']) or 'input'}: {error['msg']}"
                for error in e.errors()
            ]
            return ValidationResult(False, errors)

        return ValidationResult(True, [], validated)
