"""GitHub REST payloads, trimmed to the fields the scanner reads."""

from typing import Optional

from pydantic import BaseModel, Field


class RemoteRepository(BaseModel):
    id: int
    name: str
    full_name: str
    archived: bool = False
    html_url: Optional[str] = None

    class Config:
        extra = "ignore"


class Issue(BaseModel):
    number: int
    title: str
    html_url: Optional[str] = None
    state: str = "open"

    class Config:
        extra = "ignore"


class Account(BaseModel):
    login: str
    type: str = "User"

    class Config:
        extra = "ignore"


class CommitRef(BaseModel):
    sha: str = ""

    class Config:
        extra = "ignore"


class PullRequest(BaseModel):
    number: int
    title: str = ""
    head: CommitRef = Field(default_factory=CommitRef)
    html_url: Optional[str] = None

    class Config:
        extra = "ignore"


class IssueComment(BaseModel):
    id: int
    body: str = ""
    user: Optional[Account] = None

    class Config:
        extra = "ignore"

    @property
    def is_from_bot(self) -> bool:
        if self.user is None:
            return False
        return self.user.type == "Bot" or "bot" in self.user.login.lower()


class CheckRun(BaseModel):
    id: int
    name: str = ""
    status: str = "completed"
    conclusion: Optional[str] = None

    class Config:
        extra = "ignore"
