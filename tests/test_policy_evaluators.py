"""Tests for the built-in evaluators and the evaluation service."""

import pytest

from conftest import make_repo
from ghpolicies.core.exceptions import GitHubTransportError
from ghpolicies.policies.builtin import (
    CatalogInfoHasOwnerEvaluator, CorrectWorkflowPermissionsEvaluator, EVALUATOR_REGISTRY,
    HasAgentsMdEvaluator, HasCatalogInfoYamlEvaluator, get_evaluator,
)
from ghpolicies.schemas.config import PolicyConfig
from ghpolicies.services.policy_evaluation_service import Finding, PolicyEvaluationService

REPO = make_repo(1, "alpha")


class TestRegistry:
    @pytest.mark.parametrize("tag", ["has_agents_md", "HAS_AGENTS_MD", "has-agents-md", " Has-Agents-Md "])
    def test_lookup_ignores_case_and_separator(self, tag):
        assert isinstance(get_evaluator(tag), HasAgentsMdEvaluator)

    def test_unknown_type(self):
        assert get_evaluator("has_license") is None

    def test_every_entry_matches_its_tag(self):
        for tag, cls in EVALUATOR_REGISTRY.items():
            assert cls().policy_type == tag


class TestFilePresence:
    def test_present(self, fake_github):
        fake_github.add_file(1, "AGENTS.md", b"# agents")
        assert HasAgentsMdEvaluator().evaluate(REPO, fake_github) is None

    def test_absent(self, fake_github):
        assert HasCatalogInfoYamlEvaluator().evaluate(REPO, fake_github) == "catalog-info.yaml is missing"

    def test_gateway_error_propagates(self, fake_github):
        fake_github.errors["file_exists"] = GitHubTransportError("timeout")
        with pytest.raises(GitHubTransportError):
            HasAgentsMdEvaluator().evaluate(REPO, fake_github)


class TestWorkflowPermissions:
    def test_feature_disabled_is_compliant(self, fake_github):
        fake_github.workflow_permissions[1] = None
        assert CorrectWorkflowPermissionsEvaluator().evaluate(REPO, fake_github) is None

    def test_read(self, fake_github):
        fake_github.workflow_permissions[1] = "read"
        assert CorrectWorkflowPermissionsEvaluator().evaluate(REPO, fake_github) is None

    @pytest.mark.parametrize("permission", ["write", "Read", "READ"])
    def test_anything_else_violates(self, fake_github, permission):
        fake_github.workflow_permissions[1] = permission
        assert CorrectWorkflowPermissionsEvaluator().evaluate(REPO, fake_github) is not None


class TestCatalogOwner:
    def evaluate(self, fake_github, content):
        if content is not None:
            fake_github.add_file(1, "catalog-info.yaml", content)
        return CatalogInfoHasOwnerEvaluator().evaluate(REPO, fake_github)

    def test_absent_file_is_compliant(self, fake_github):
        assert self.evaluate(fake_github, None) is None

    def test_owner_present(self, fake_github):
        content = b"apiVersion: backstage.io/v1alpha1\nkind: Component\nspec:\n  owner: team-platform\n"
        assert self.evaluate(fake_github, content) is None

    @pytest.mark.parametrize("content", [
        b"kind: Component\n",
        b"spec:\n  lifecycle: production\n",
        b"spec:\n  owner: '  '\n",
        b"spec: just-a-string\n",
        b"",
    ])
    def test_missing_owner(self, fake_github, content):
        assert self.evaluate(fake_github, content) is not None

    def test_unparsable_yaml_is_a_violation(self, fake_github):
        assert self.evaluate(fake_github, b"spec: [owner: {\n") == "catalog-info.yaml could not be parsed"

    def test_undecodable_bytes_are_a_violation(self, fake_github):
        assert self.evaluate(fake_github, b"\xff\xfe\x00owner") == "catalog-info.yaml could not be parsed"


class TestEvaluationService:
    def policies(self, *types):
        return [PolicyConfig(name=t, type=t) for t in types]

    def test_concatenates_findings_and_skips_compliant(self, fake_github):
        fake_github.add_file(1, "catalog-info.yaml", b"spec:\n  owner: a\n")
        fake_github.workflow_permissions[1] = "write"
        findings = PolicyEvaluationService().evaluate_repository(
            REPO,
            self.policies("has-agents-md", "has_catalog_info_yaml", "catalog_info_has_owner",
                          "correct_workflow_permissions"),
            fake_github,
        )
        assert [f.policy_type for f in findings] == ["has_agents_md", "correct_workflow_permissions"]

    def test_unknown_type_is_skipped(self, fake_github):
        findings = PolicyEvaluationService().evaluate_repository(REPO, self.policies("has_license"), fake_github)
        assert findings == []
        assert fake_github.calls == []

    def test_deterministic(self, fake_github):
        policies = self.policies("has_agents_md", "has_catalog_info_yaml", "catalog_info_has_owner")
        service = PolicyEvaluationService()
        first = service.evaluate_repository(REPO, policies, fake_github)
        second = service.evaluate_repository(REPO, policies, fake_github)
        assert set(first) == set(second)
        assert Finding("has_agents_md", "AGENTS.md is missing") in first

    def test_custom_resolver(self, fake_github):
        class AlwaysViolates(HasAgentsMdEvaluator):
            def evaluate(self, repository, github):
                return "nope"

        service = PolicyEvaluationService(resolver=lambda tag: AlwaysViolates())
        assert service.evaluate_repository(REPO, self.policies("anything"), fake_github) == [
            Finding("anything", "nope")
        ]
