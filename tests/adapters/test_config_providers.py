"""
Tests for the file and environment configuration providers.
"""

import textwrap

import pytest

from boardsync.adapters.config import (
    EnvironmentConfigProvider,
    FileConfigProvider,
    build_app_config,
    find_config_file,
)
from boardsync.adapters.config.file_provider import (
    apply_cli_overrides,
    build_mapping_config,
    get_dotted,
    read_config_file,
    set_dotted,
)
from boardsync.core.domain import Transform
from boardsync.core.exceptions import ConfigError, ConfigFileError


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    """Run every test from an empty directory."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


def write(path, content):
    path.write_text(textwrap.dedent(content), encoding="utf-8")
    return path


# =============================================================================
# Helpers
# =============================================================================


class TestDottedKeys:
    def test_set_and_get(self):
        data = {}
        set_dotted(data, "ado.organization", "acme")
        assert data == {"ado": {"organization": "acme"}}
        assert get_dotted(data, "ado.organization") == "acme"
        assert get_dotted(data, "ado.project", "none") == "none"
        assert get_dotted(data, "sync.poll_interval") is None

    def test_set_replaces_scalar_section(self):
        data = {"ado": "broken"}
        set_dotted(data, "ado.project", "Web")
        assert data == {"ado": {"project": "Web"}}

    def test_cli_overrides_ignore_none_and_unknown(self):
        data = {"ado": {"organization": "acme"}}
        apply_cli_overrides(
            data,
            {"organization": None, "project": "Web", "verbose": True, "poll_interval": 5.0},
        )
        assert data == {"ado": {"organization": "acme", "project": "Web"}, "sync": {"poll_interval": 5.0}}


# =============================================================================
# Files
# =============================================================================


class TestConfigFiles:
    def test_find_yaml_first(self, isolated_cwd):
        write(isolated_cwd / ".boardsync.toml", "")
        write(isolated_cwd / ".boardsync.yaml", "")
        assert find_config_file() == isolated_cwd / ".boardsync.yaml"

    def test_find_pyproject_section(self, isolated_cwd):
        write(isolated_cwd / "pyproject.toml", "[tool.boardsync.ado]\norganization = 'acme'\n")
        assert find_config_file() == isolated_cwd / "pyproject.toml"
        assert read_config_file(isolated_cwd / "pyproject.toml") == {"ado": {"organization": "acme"}}

    def test_pyproject_without_section_is_ignored(self, isolated_cwd):
        write(isolated_cwd / "pyproject.toml", "[project]\nname = 'x'\n")
        assert find_config_file() is None

    def test_nothing_found(self):
        assert find_config_file() is None

    def test_missing_file(self, isolated_cwd):
        with pytest.raises(ConfigFileError, match="not found"):
            read_config_file(isolated_cwd / "nope.yaml")

    def test_invalid_yaml(self, isolated_cwd):
        path = write(isolated_cwd / ".boardsync.yaml", "ado: [unclosed\n")
        with pytest.raises(ConfigFileError, match="Invalid YAML") as exc_info:
            read_config_file(path)
        assert exc_info.value.file_path == path

    def test_invalid_toml(self, isolated_cwd):
        path = write(isolated_cwd / ".boardsync.toml", "[ado\n")
        with pytest.raises(ConfigFileError, match="Invalid TOML"):
            read_config_file(path)

    def test_non_mapping(self, isolated_cwd):
        path = write(isolated_cwd / ".boardsync.yaml", "- a\n- b\n")
        with pytest.raises(ConfigFileError, match="mapping"):
            read_config_file(path)

    def test_empty_yaml_is_empty_mapping(self, isolated_cwd):
        path = write(isolated_cwd / ".boardsync.yaml", "")
        assert read_config_file(path) == {}


# =============================================================================
# AppConfig building
# =============================================================================


class TestBuildAppConfig:
    def test_defaults(self):
        config = build_app_config({"ado": {"organization": "acme", "project": "Web"}})

        assert config.connection.base_url == "https://dev.azure.com"
        assert config.sync.poll_interval == 30.0
        assert config.sync.inbound_enabled
        assert config.sync.db_path == "~/.board/data.db"
        assert config.sync.default_work_item_type == "Issue"
        assert config.mapping.states.outbound["review"] == "Resolved"
        assert config.validate() == []

    def test_string_values_are_coerced(self):
        config = build_app_config(
            {"sync": {"poll_interval": "45", "batch_size": "50", "inbound": "no", "outbound": "yes"}}
        )

        assert config.sync.poll_interval == 45.0
        assert config.sync.batch_size == 50
        assert not config.sync.inbound_enabled
        assert config.sync.outbound_enabled

    def test_bad_number(self):
        with pytest.raises(ConfigError, match="sync.poll_interval"):
            build_app_config({"sync": {"poll_interval": "soon"}})

    def test_validation_errors(self):
        config = build_app_config({"sync": {"poll_interval": 0, "batch_size": 500}})

        errors = config.validate()

        assert "Missing Azure DevOps organization (ADO_ORG)" in errors
        assert "Missing Azure DevOps project (ADO_PROJECT)" in errors
        assert "Poll interval must be at least 1 second" in errors
        assert "Batch size must be between 1 and 200" in errors

    def test_mapping_section(self):
        mapping = build_mapping_config(
            "scrum",
            {
                "states": {"inbound": {"Blocked": "in_progress"}},
                "priorities": {"inbound": {"1": "P1"}, "outbound": {"P3": 3}},
                "fields": [
                    {
                        "localField": "extensions.storyPoints",
                        "remoteField": "Microsoft.VSTS.Scheduling.StoryPoints",
                    },
                    {
                        "local_field": "description",
                        "remote_field": "System.Description",
                        "inbound_transform": "keepHtml",
                    },
                    {"localField": "extensions.x", "remoteField": "Custom.X", "inboundTransform": "nope"},
                ],
                "workItemTypes": ["Product Backlog Item", "Bug"],
            },
        )

        assert mapping.states.inbound["Blocked"] == "in_progress"
        assert mapping.states.inbound["Committed"] == "in_progress"
        assert mapping.states.outbound["in_progress"] == "Committed"
        assert mapping.priorities.inbound[1] == "P1"
        assert mapping.priorities.inbound[2] == "P1"
        assert mapping.priorities.outbound["P3"] == 3
        assert [f.local_field for f in mapping.fields] == [
            "extensions.storyPoints",
            "description",
            "extensions.x",
        ]
        assert mapping.fields[1].inbound_transform is Transform.KEEP_HTML
        assert mapping.fields[2].inbound_transform is Transform.PASSTHROUGH
        assert mapping.work_item_types == ["Product Backlog Item", "Bug"]


# =============================================================================
# Providers
# =============================================================================


class TestFileConfigProvider:
    def test_load_yaml(self, isolated_cwd):
        write(
            isolated_cwd / ".boardsync.yaml",
            """
            ado:
              organization: acme
              project: Web
              area_path: Web\\Payments
            sync:
              poll_interval: 60
              process_template: basic
            """,
        )

        provider = FileConfigProvider()
        config = provider.load()

        assert provider.name == "File (.boardsync.yaml)"
        assert config.connection.organization == "acme"
        assert config.connection.area_path == "Web\\Payments"
        assert config.sync.poll_interval == 60
        assert config.mapping.states.outbound["draft"] == "To Do"
        assert provider.validate() == []

    def test_cli_overrides_win(self, isolated_cwd):
        path = write(
            isolated_cwd / "board.toml",
            """
            [ado]
            organization = "acme"
            project = "Web"
            """,
        )

        provider = FileConfigProvider(path, cli_overrides={"project": "Mobile"})

        assert provider.load().connection.project == "Mobile"
        assert provider.get("ado.project") == "Mobile"
        assert provider.raw()["ado"]["project"] == "Web"

    def test_no_file(self):
        provider = FileConfigProvider()

        assert provider.name == "File (none)"
        assert provider.raw() == {}
        assert len(provider.validate()) == 2

    def test_validate_reports_parse_errors(self, isolated_cwd):
        write(isolated_cwd / ".boardsync.yaml", "ado: [unclosed\n")

        errors = FileConfigProvider().validate()

        assert len(errors) == 1
        assert "Invalid YAML" in errors[0]


class TestEnvironmentConfigProvider:
    def test_environment_variables(self):
        provider = EnvironmentConfigProvider(
            environ={
                "ADO_ORG": "acme",
                "ADO_PROJECT": "Web",
                "ADO_POLL_INTERVAL": "15",
                "ADO_PROCESS_TEMPLATE": "scrum",
                "BOARD_DB_PATH": "/tmp/board.db",
            }
        )

        config = provider.load()

        assert provider.name == "Environment"
        assert config.connection.organization == "acme"
        assert config.sync.poll_interval == 15.0
        assert config.sync.db_path == "/tmp/board.db"
        assert config.mapping.states.outbound["in_progress"] == "Committed"

    def test_short_org_variable_wins(self):
        provider = EnvironmentConfigProvider(
            environ={"AZURE_DEVOPS_ORG": "long", "ADO_ORG": "short", "ADO_PROJECT": "Web"}
        )
        assert provider.load().connection.organization == "short"

    def test_long_org_variable_alone(self):
        provider = EnvironmentConfigProvider(
            environ={"AZURE_DEVOPS_ORG": "long", "ADO_PROJECT": "Web"}
        )
        assert provider.load().connection.organization == "long"

    def test_precedence(self, isolated_cwd):
        write(
            isolated_cwd / ".boardsync.yaml",
            """
            ado:
              organization: from-file
              project: from-file
              board: from-file
            sync:
              batch_size: 10
            """,
        )
        write(isolated_cwd / ".env", "ADO_PROJECT=from-dotenv\nADO_BOARD=from-dotenv\n")

        provider = EnvironmentConfigProvider(
            environ={"ADO_BOARD": "from-env"},
            cli_overrides={"organization": "from-cli", "project": None},
        )
        config = provider.load()

        assert provider.name == "Environment + .boardsync.yaml"
        assert provider.config_file_path == isolated_cwd / ".boardsync.yaml"
        assert config.connection.organization == "from-cli"
        assert config.connection.project == "from-dotenv"
        assert config.connection.board == "from-env"
        assert config.sync.batch_size == 10

    def test_explicit_env_file(self, isolated_cwd):
        env_file = write(isolated_cwd / "custom.env", "ADO_ORG=acme\nADO_PROJECT=Web\n")

        provider = EnvironmentConfigProvider(env_file=env_file, environ={})

        assert provider.validate() == []

    def test_pat_is_never_read(self):
        provider = EnvironmentConfigProvider(
            environ={"ADO_ORG": "acme", "ADO_PROJECT": "Web", "ADO_PAT": "secret-token"}
        )

        assert "secret-token" not in repr(provider.load())

    def test_missing_values_get_a_hint(self):
        errors = EnvironmentConfigProvider(environ={}).validate()

        assert len(errors) == 2
        assert all("command line" in e for e in errors)

    def test_invalid_number(self):
        provider = EnvironmentConfigProvider(
            environ={"ADO_ORG": "acme", "ADO_PROJECT": "Web", "ADO_BATCH_SIZE": "lots"}
        )

        assert provider.validate() == ["Invalid value for sync.batch_size: 'lots'"]
        with pytest.raises(ConfigError):
            provider.load()

    def test_get(self):
        provider = EnvironmentConfigProvider(environ={"ADO_AREA_PATH": "Web\\Team"})
        assert provider.get("ado.area_path") == "Web\\Team"
        assert provider.get("ado.board", "none") == "none"
