from pydantic import BaseModel, ConfigDict, Field


# --- Content ---


class QuestionCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = ""
    author: str | None = None
    use_ai: bool = Field(default=False, alias="useAI")


class ReplyCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = ""
    author: str | None = None
    use_ai: bool = Field(default=False, alias="useAI")


# --- Admin ---


class LoginRequest(BaseModel):
    username: str = ""
    password: str = ""


class LoginResponse(BaseModel):
    token: str


class MaintenanceUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = True
    message: str | None = None
    logo_url: str | None = Field(default=None, alias="logoUrl")
    duration_minutes: float | None = Field(default=None, alias="durationMinutes")


class MaintenanceSnapshot(BaseModel):
    status: bool
    message: str
    logoUrl: str | None = None
    until: str | None = None


# --- Members ---


class MemberInfo(BaseModel):
    id: str
    username: str


class MemberCount(BaseModel):
    count: int
