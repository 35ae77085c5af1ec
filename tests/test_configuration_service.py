"""Tests for configuration loading and the team-membership gate."""

import json

import pytest
from pydantic import ValidationError

from conftest import FakeGitHub, make_config
from ghpolicies.core.config import Settings
from ghpolicies.core.exceptions import (
    ConfigurationNotFoundError, GitHubTransportError, InvalidConfigurationError,
)
from ghpolicies.services.authorization_service import AuthorizationService
from ghpolicies.services.configuration_service import ConfigurationService

VALID = {
    "access_control": {"authorized_team": "acme/platform"},
    "policies": [
        {"name": "Agents file", "type": "has_agents_md", "action": "create-issue",
         "issue_details": {"title": "Add AGENTS.md", "body": "Please add one.", "labels": ["docs"]}},
        {"name": "Owner", "type": "catalog_info_has_owner", "action": ["log-only", "create-issue", " "]},
    ],
}


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def service_for(documents, clock=None, ttl=60):
    """A ConfigurationService whose settings return each document in turn."""
    loads = []

    def factory():
        raw = documents[min(len(loads), len(documents) - 1)]
        loads.append(raw)
        return Settings(POLICY_CONFIG_JSON=raw)

    return ConfigurationService(settings_factory=factory, ttl_seconds=ttl, clock=clock or FakeClock()), loads


class TestConfigurationService:
    def test_parses_document(self):
        service, _ = service_for([json.dumps(VALID)])
        config = service.get_config()

        assert config.access_control.authorized_team == "acme/platform"
        agents, owner = config.policies
        assert agents.actions == ["create-issue"]
        assert agents.issue_details.labels == ["docs"]
        assert owner.actions == ["log-only", "create-issue"]
        assert config.find_policy("HAS_AGENTS_MD") is agents
        assert config.find_policy("has-agents-md") is agents
        assert config.find_policy(" Has-Agents-Md ") is agents

    def test_parses_pull_request_details(self):
        document = {"access_control": {"authorized_team": "acme/platform"}, "policies": [{
            "type": "has_agents_md",
            "action": ["comment-on-prs", "block-prs"],
            "pr_comment_details": {"message": "Add an AGENTS.md."},
            "block_prs_details": {"status_check_name": "Agents gate"},
        }]}
        service, _ = service_for([json.dumps(document)])
        (policy,) = service.get_config().policies

        assert policy.actions == ["comment-on-prs", "block-prs"]
        assert policy.pr_comment_details.message == "Add an AGENTS.md."
        assert policy.block_prs_details.status_check_name == "Agents gate"

    def test_block_details_default_check_name(self):
        document = {"access_control": {"authorized_team": "acme/platform"},
                    "policies": [{"type": "has_agents_md", "action": "block-prs", "block_prs_details": {}}]}
        service, _ = service_for([json.dumps(document)])
        assert service.get_config().policies[0].block_prs_details.status_check_name == "Policy Compliance Check"

    def test_configuration_is_immutable(self):
        service, _ = service_for([json.dumps(VALID)])
        config = service.get_config()
        with pytest.raises(ValidationError):
            config.policies[0].type = "other"

    def test_cached_until_ttl(self):
        clock = FakeClock()
        service, loads = service_for([json.dumps(VALID)], clock=clock, ttl=60)
        service.get_config()
        clock.now = 59
        service.get_config()
        assert len(loads) == 1
        clock.now = 61
        service.get_config()
        assert len(loads) == 2

    def test_force_refresh(self):
        changed = dict(VALID, access_control={"authorized_team": "acme/security"})
        service, loads = service_for([json.dumps(VALID), json.dumps(changed)])
        service.get_config()
        assert service.get_config(force_refresh=True).access_control.authorized_team == "acme/security"
        assert len(loads) == 2

    def test_absent(self):
        service, _ = service_for(["  "])
        with pytest.raises(ConfigurationNotFoundError):
            service.get_config()

    @pytest.mark.parametrize("raw", [
        "{not json",
        json.dumps({"policies": [{"name": "x"}]}),
        json.dumps({"access_control": {"authorized_team": ""}, "policies": []}),
    ])
    def test_invalid(self, raw):
        service, _ = service_for([raw])
        with pytest.raises(InvalidConfigurationError):
            service.get_config()


class TestAuthorizationService:
    def test_member(self):
        github = FakeGitHub()
        service = AuthorizationService(github, make_config(team="acme/platform"))
        assert service.is_user_authorized("member-token") is True
        assert github.calls_to("is_user_in_team") == [("is_user_in_team", "member-token", "acme", "platform")]

    def test_non_member(self):
        service = AuthorizationService(FakeGitHub(), make_config())
        assert service.is_user_authorized("someone-else") is False

    def test_empty_token(self):
        github = FakeGitHub()
        assert AuthorizationService(github, make_config()).is_user_authorized("") is False
        assert github.calls == []

    @pytest.mark.parametrize("team", ["platform", "acme/", "acme/platform/extra"])
    def test_malformed_team(self, team):
        github = FakeGitHub()
        assert AuthorizationService(github, make_config(team=team)).is_user_authorized("member-token") is False
        assert github.calls == []

    def test_configuration_failure_denies(self):
        service, _ = service_for([""])
        assert AuthorizationService(FakeGitHub(), service).is_user_authorized("member-token") is False

    def test_api_failure_denies(self):
        github = FakeGitHub()
        github.errors["is_user_in_team"] = GitHubTransportError("timeout")
        assert AuthorizationService(github, make_config()).is_user_authorized("member-token") is False
