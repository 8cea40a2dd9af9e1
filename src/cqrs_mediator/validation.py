"""Validation machinery."""
from dataclasses import dataclass
import dataclasses
from typing import Any, Dict, List, Type, TypeVar

from .protocols import Validator

T = TypeVar("T")

try:
    from pydantic import BaseModel
    from pydantic import ValidationError as PydanticValidationError

    HAS_PYDANTIC = True
except ImportError:
    HAS_PYDANTIC = False


@dataclass
class ValidationResult:
    """Standard validation result."""

    errors: Dict[str, List[str]]

    def has_errors(self) -> bool:
        """Check if there are any validation errors."""
        return len(self.errors) > 0

    def is_valid(self) -> bool:
        """Check if validation passed."""
        return not self.has_errors()

    @classmethod
    def success(cls) -> "ValidationResult":
        """Create a successful validation result (no errors)."""
        return cls(errors={})

    @classmethod
    def failure(cls, errors: Dict[str, List[str]]) -> "ValidationResult":
        """
        Create a failed validation result.

        Args:
            errors: Dictionary mapping field names to lists of error messages.
        """
        return cls(errors=errors)


class CompositeValidator(Validator[T]):
    """Runs multiple validators in sequence."""

    def __init__(self, validators: List[Validator[T]]):
        self.validators = validators

    async def validate(self, message: T) -> ValidationResult:
        all_errors: Dict[str, List[str]] = {}

        for validator in self.validators:
            result = await validator.validate(message)
            if result.has_errors():
                for field, msgs in result.errors.items():
                    all_errors.setdefault(field, []).extend(msgs)

        return ValidationResult(errors=all_errors)


def message_to_dict(message: Any) -> Dict[str, Any]:
    """Extract the public fields of a dataclass, pydantic model or plain object."""
    if HAS_PYDANTIC and isinstance(message, BaseModel):
        return message.model_dump()
    if dataclasses.is_dataclass(message) and not isinstance(message, type):
        return {
            f.name: getattr(message, f.name)
            for f in dataclasses.fields(message)
            if not f.name.startswith("_")
        }
    return {k: v for k, v in vars(message).items() if not k.startswith("_")}


class ModelValidator(Validator[T]):
    """
    Validates a message's fields against a pydantic model.

    Lets plain dataclass messages reuse pydantic constraints:

        class CreateUserRules(BaseModel):
            name: str = Field(min_length=1)

        ValidationBehavior(ModelValidator(CreateUserRules))
    """

    def __init__(self, model_class: Type[Any]):
        if not HAS_PYDANTIC:
            raise ImportError("pydantic is not installed.")
        self.model_class = model_class

    async def validate(self, message: T) -> ValidationResult:
        try:
            self.model_class.model_validate(message_to_dict(message))
        except PydanticValidationError as e:
            errors: Dict[str, List[str]] = {}
            for error in e.errors():
                field = ".".join(str(part) for part in error["loc"]) or "__root__"
                errors.setdefault(field, []).append(error["msg"])
            return ValidationResult.failure(errors)
        return ValidationResult.success()
