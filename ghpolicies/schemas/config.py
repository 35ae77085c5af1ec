"""Immutable policy configuration handed to the scanning core."""

from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from ghpolicies.policies.builtin import normalize_policy_type


class IssueDetails(BaseModel):
    title: Optional[str] = None
    body: Optional[str] = None
    labels: List[str] = Field(default_factory=list)

    class Config:
        frozen = True


class PrCommentDetails(BaseModel):
    message: str = ""

    class Config:
        frozen = True


class BlockPrsDetails(BaseModel):
    status_check_name: str = "Policy Compliance Check"

    class Config:
        frozen = True


class PolicyConfig(BaseModel):
    """One configured policy. ``action`` accepts a single name or a list."""

    name: str = ""
    type: str = Field(..., min_length=1)
    actions: List[str] = Field(default_factory=list, alias="action")
    issue_details: Optional[IssueDetails] = None
    pr_comment_details: Optional[PrCommentDetails] = None
    block_prs_details: Optional[BlockPrsDetails] = None

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator("type")
    @classmethod
    def _strip_type(cls, value: str) -> str:
        return value.strip()

    @field_validator("actions", mode="before")
    @classmethod
    def _normalize_actions(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [str(item).strip() for item in value if item is not None and str(item).strip()]


class AccessControlConfig(BaseModel):
    authorized_team: str = ""

    class Config:
        frozen = True


class AppConfig(BaseModel):
    access_control: AccessControlConfig = Field(default_factory=AccessControlConfig)
    policies: List[PolicyConfig] = Field(default_factory=list)

    class Config:
        frozen = True

    def find_policy(self, policy_type: str) -> Optional[PolicyConfig]:
        """First configured policy whose normalized type matches."""
        wanted = normalize_policy_type(policy_type)
        return next((p for p in self.policies if normalize_policy_type(p.type) == wanted), None)
