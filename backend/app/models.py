from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, StringConstraints, ValidationError

Required = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class UploadedFile(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    content: Optional[str] = None  # base64


class EssayJobRequest(BaseModel):
    # Unknown wizard fields are kept in the job input.
    model_config = ConfigDict(extra="allow")

    subject: Required
    examQuestion: Required
    yearGroup: Optional[str] = None
    examBoard: Optional[str] = None
    totalMarks: Optional[Union[int, str]] = None
    timeAllowed: Optional[Union[int, str]] = None
    paperName: Optional[str] = None
    sourceMaterial: Optional[str] = None
    sourceFiles: List[UploadedFile] = []
    markScheme: Optional[str] = None
    markSchemeFile: Optional[UploadedFile] = None
    additionalNotes: Optional[str] = None
    minWords: Optional[int] = None
    targetWords: Optional[int] = None
    maxAttempts: Optional[int] = None
    teacherPassword: Optional[str] = None
    gradeBoundaries: Optional[Union[str, List[Any]]] = None
    gradeScale: Optional[str] = None
    promptVariant: Optional[str] = None


class PastPaperSearchRequest(BaseModel):
    examBoard: Required
    subject: Required
    paper: Optional[str] = None
    questionNumber: Optional[Union[int, str]] = None


class GradeSearchRequest(BaseModel):
    examBoard: Required
    subject: Required
    qualification: Optional[str] = None
    totalMarks: Optional[int] = None


class ProcessRequest(BaseModel):
    jobId: Required


def validation_message(e: ValidationError) -> str:
    missing = [str(err["loc"][0]) for err in e.errors() if err["type"] in ("missing", "string_too_short")]
    if missing:
        return f"Missing required fields: {', '.join(missing)}"
    first = e.errors()[0]
    field = ".".join(str(p) for p in first["loc"])
    return f"Invalid field {field}: {first['msg']}"


def dump_input(req: BaseModel) -> Dict[str, Any]:
    return req.model_dump(exclude_none=True)
