from pydantic import BaseModel, Field
from typing import List, Optional, Literal

# --- AI suggestion payloads ---

ListSuggestionKind = Literal["failure-modes", "causes", "effects", "controls"]

class Suggestion(BaseModel):
    text: str
    confidence: float = Field(default=0.5, ge=0, le=1)
    reasoning: str = ""
    # Optional ratings some prompts ask for
    severity: Optional[int] = None
    occurrence: Optional[int] = None
    detection: Optional[int] = None
    effectiveness: Optional[int] = None
    type: Optional[Literal["prevention", "detection"]] = None

class SuggestionResponse(BaseModel):
    suggestions: List[Suggestion] = []

class AISuggestion(BaseModel):
    type: ListSuggestionKind
    suggestions: List[Suggestion]
    context: str
    fallback: bool = False

class RiskScoreSuggestion(BaseModel):
    score: int = Field(ge=1, le=10)
    reasoning: str
    fallback: bool = False

DuplicateKind = Literal["component", "failureMode", "effect", "componentFunction"]

class DuplicateNameSuggestion(BaseModel):
    name: str
    reasoning: str = ""
    fallback: bool = False

class ChatReply(BaseModel):
    message: str
    fallback: bool = False
