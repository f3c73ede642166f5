"""Pydantic models for GitLab webhook payloads.

One model covers every ``object_kind``; nested records are optional because
their presence depends on the kind.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

ObjectKind = Literal["push", "tag_push", "issue", "merge_request", "note", "build"]

ZERO_SHA = "0000000000000000000000000000000000000000"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def null_as_default(cls, value, info: ValidationInfo):
        # GitLab sends null for absent strings and records (note commit_id, user email)
        if value is None:
            field = cls.model_fields[info.field_name]
            if not field.is_required():
                return field.get_default(call_default_factory=True)
        return value


class Project(_Payload):
    id: int = 0
    name: str = ""
    path_with_namespace: str = ""
    web_url: str = ""


class Repository(_Payload):
    name: str = ""
    url: str = ""
    description: Optional[str] = None
    homepage: str = ""


class Author(_Payload):
    name: str = ""
    email: str = ""


class User(_Payload):
    name: str = ""
    username: str = ""
    email: str = ""
    avatar_url: Optional[str] = None


class Commit(_Payload):
    id: str
    message: str = ""
    timestamp: Optional[str] = None
    author: Author = Field(default_factory=Author)
    url: str = ""
    added: list[str] = Field(default_factory=list)
    modified: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)


class EmbeddedCommit(_Payload):
    """Commit record embedded in ``build`` (numeric id, ``sha``) and ``note`` (sha as ``id``) events."""

    id: Optional[int | str] = None
    sha: str = ""
    message: str = ""
    author_name: str = ""
    author_email: str = ""
    url: str = ""


class Attributes(_Payload):
    id: int = 0
    iid: int = 0
    title: str = ""
    note: str = ""
    noteable_type: str = ""
    noteable_id: Optional[int] = None
    project_id: int = 0
    target_project_id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""
    commit_id: str = ""
    description: Optional[str] = ""
    milestone_id: Optional[int] = None
    state: str = ""
    url: str = ""
    action: Optional[str] = None


class MergeRequest(_Payload):
    id: int = 0
    iid: int = 0
    target_branch: str = ""
    source_branch: str = ""
    state: str = ""
    title: str = ""
    description: Optional[str] = ""


class Issue(_Payload):
    id: int = 0
    iid: int = 0
    title: str = ""
    state: str = ""


class Snippet(_Payload):
    id: int = 0
    title: str = ""
    file_name: str = ""


class GitLabWebhook(_Payload):
    object_kind: str

    # push / tag_push
    ref: str = ""
    before: str = ""
    after: str = ""
    user_id: Optional[int] = None
    user_name: str = ""
    user_username: str = ""
    user_email: Optional[str] = ""
    project_id: int = 0
    commits: list[Commit] = Field(default_factory=list)

    # build
    sha: str = ""
    build_id: int = 0
    build_status: str = ""
    build_name: str = ""
    build_stage: str = ""
    build_duration: Optional[float] = None
    build_allow_failure: bool = False
    commit: Optional[EmbeddedCommit] = None

    user: User = Field(default_factory=User)
    project: Project = Field(default_factory=Project)
    repository: Repository = Field(default_factory=Repository)
    object_attributes: Optional[Attributes] = None
    issue: Optional[Issue] = None
    snippet: Optional[Snippet] = None
    merge_request: Optional[MergeRequest] = None


class WebhookResponse(BaseModel):
    status: str
    message_id: Optional[int] = None
    errors: list[str] = Field(default_factory=list)
