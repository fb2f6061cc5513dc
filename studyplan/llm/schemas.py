import re
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from studyplan.core.errors import ParseError
from studyplan.llm.json_parse import extract_json

_INT_RE = re.compile(r"[+-]?\d+")


def _coerce_int(value: Any) -> int:
    """Accept ints, integral floats and digit strings; anything else is ambiguous."""
    if isinstance(value, bool):
        raise ValueError("expected an integer, got a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValueError(f"expected a whole number, got {value}")
    if isinstance(value, str) and _INT_RE.fullmatch(value.strip()):
        return int(value.strip())
    raise ValueError(f"expected an integer, got {value!r}")


def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"expected a string, got {type(value).__name__}")
    value = value.strip()
    return value or None


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SubjectRef(_Lenient):
    id: Optional[str] = None
    name: Optional[str] = None

    @field_validator("id", "name", mode="before")
    @classmethod
    def _strip(cls, v):
        return _clean_str(v)

    @model_validator(mode="after")
    def _id_or_name(self):
        if not self.id and not self.name:
            raise ValueError("subject needs an id or a name")
        return self


class TopicDraft(_Lenient):
    name: str
    subject_id: Optional[str] = Field(None, alias="subjectId")
    subject_name: Optional[str] = Field(None, alias="subjectName")
    estimated_hours: int = Field(..., alias="estimatedHours", ge=0)

    @field_validator("name", "subject_id", "subject_name", mode="before")
    @classmethod
    def _strip(cls, v):
        return _clean_str(v)

    @field_validator("estimated_hours", mode="before")
    @classmethod
    def _hours(cls, v):
        return _coerce_int(v)

    @model_validator(mode="after")
    def _has_subject(self):
        if not self.subject_id and not self.subject_name:
            raise ValueError("topic needs a subjectId or a subjectName")
        return self


class ParsedPlan(_Lenient):
    title: str
    description: str = ""
    subjects: List[SubjectRef] = Field(..., min_length=1)
    topics: List[TopicDraft] = []
    total_hours: Optional[int] = Field(None, alias="totalHours", ge=0)

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, v):
        return _clean_str(v)

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, v):
        return _clean_str(v) or ""

    @field_validator("topics", mode="before")
    @classmethod
    def _topics(cls, v):
        return [] if v is None else v

    @field_validator("total_hours", mode="before")
    @classmethod
    def _total(cls, v):
        return None if v is None else _coerce_int(v)


def _describe(err: ValidationError) -> str:
    parts = []
    for e in err.errors():
        loc = ".".join(str(x) for x in e.get("loc", ())) or "plan"
        parts.append(f"{loc}: {e.get('msg')}")
    return "; ".join(parts[:5])


def parse_plan(text: str, allowed_ids: Iterable[str], allowed_names: Iterable[str]) -> ParsedPlan:
    """
    Turn a raw LLM reply into a ParsedPlan.

    allowed_ids are the request's subjectIds; allowed_names are the catalog names
    of those subjects. The LLM may not introduce subjects outside of them.
    """
    data = extract_json(text)
    try:
        plan = ParsedPlan.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"LLM plan failed validation: {_describe(e)}", text) from e

    ids = set(allowed_ids)
    names = {n.casefold() for n in allowed_names}

    for ref in plan.subjects:
        if ref.id is not None:
            if ref.id not in ids:
                raise ParseError(f"LLM introduced subject id {ref.id!r} that was not requested", text)
        elif ref.name.casefold() not in names:
            raise ParseError(f"LLM introduced subject {ref.name!r} that was not requested", text)

    for topic in plan.topics:
        if topic.subject_id is not None:
            if topic.subject_id not in ids:
                raise ParseError(
                    f"Topic {topic.name!r} references subject id {topic.subject_id!r} that was not requested", text
                )
        elif topic.subject_name.casefold() not in names:
            raise ParseError(
                f"Topic {topic.name!r} references subject {topic.subject_name!r} that was not requested", text
            )

    return plan
