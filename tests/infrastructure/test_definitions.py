"""Tests for the TOML workflow definition store."""

import pytest

from helmsman.domain.exceptions import WorkflowNotFoundError, WorkflowValidationError
from helmsman.infrastructure.definitions import TomlWorkflowDefinitionStore, parse_definition

DEPLOY = """
name = "deploy"
version = "1.0"
initial_step = "build"
terminal_steps = ["live"]

[steps.build]
name = "Build"
outputs = ["artifact"]

[[steps.build.next]]
target = "live"
condition = "exists(artifact)"

[[steps.build.next]]
target = "build"

[steps.live]
name = "Live"
"""


class TestBuiltins:
    def test_builtins_listed(self):
        names = TomlWorkflowDefinitionStore().list_names()
        assert {"verify-fix", "plan-review"} <= set(names)

    @pytest.mark.parametrize("name", ["verify-fix", "plan-review"])
    def test_builtins_are_valid(self, name):
        definition = TomlWorkflowDefinitionStore().load(name)

        assert definition.name == name
        assert definition.terminal_steps

    def test_unknown_workflow(self):
        with pytest.raises(WorkflowNotFoundError):
            TomlWorkflowDefinitionStore().load("missing")

    def test_builtins_can_be_excluded(self, tmp_path):
        store = TomlWorkflowDefinitionStore(tmp_path, include_builtin=False)

        assert store.list_names() == []
        with pytest.raises(WorkflowNotFoundError):
            store.load("verify-fix")


class TestProjectDefinitions:
    """Project directory lookup and validation."""

    def test_project_definition_loaded(self, tmp_path):
        (tmp_path / "deploy.toml").write_text(DEPLOY)
        store = TomlWorkflowDefinitionStore(tmp_path)

        definition = store.load("deploy")

        assert definition.initial_step == "build"
        assert "deploy" in store.list_names()

    def test_project_overrides_builtin(self, tmp_path):
        (tmp_path / "verify-fix.toml").write_text(DEPLOY.replace('"deploy"', '"verify-fix"'))

        definition = TomlWorkflowDefinitionStore(tmp_path).load("verify-fix")

        assert definition.initial_step == "build"

    def test_missing_project_dir_falls_back_to_builtins(self, tmp_path):
        store = TomlWorkflowDefinitionStore(tmp_path / "absent")
        assert store.load("plan-review").initial_step == "draft"

    def test_validate_file(self, tmp_path):
        path = tmp_path / "deploy.toml"
        path.write_text(DEPLOY)

        assert TomlWorkflowDefinitionStore().validate_file(path).name == "deploy"


class TestParseDefinition:
    def test_invalid_toml(self):
        with pytest.raises(WorkflowValidationError, match="invalid TOML"):
            parse_definition("name = ", source="bad.toml")

    def test_schema_error_reports_path(self):
        text = DEPLOY.replace('target = "build"', 'target = "build"\nweight = 3')

        with pytest.raises(WorkflowValidationError) as exc_info:
            parse_definition(text, source="deploy.toml")

        assert exc_info.value.source == "deploy.toml"
        assert exc_info.value.errors[0].startswith("steps.build.next.1")

    def test_graph_errors_reported(self):
        text = DEPLOY.replace('target = "live"', 'target = "moon"')

        with pytest.raises(WorkflowValidationError, match="moon"):
            parse_definition(text, source="deploy.toml")

    def test_bad_condition_reported(self):
        text = DEPLOY.replace("exists(artifact)", "exists(artifact")

        with pytest.raises(WorkflowValidationError):
            parse_definition(text, source="deploy.toml")
