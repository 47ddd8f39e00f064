import json

import pytest
from typer.testing import CliRunner

from depot_packer import __version__
from depot_packer.cli import app as cli_app
from depot_packer.exceptions import TemplateError
from depot_packer.storage.login_store import LoginStore
from depot_packer.template.renderer import (
    EXAMPLE_METADATA,
    default_template,
    render_template,
)

runner = CliRunner()


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    monkeypatch.setattr(cli_app, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(cli_app, "CONFIG_FILE", config_dir / "config.ini")
    return config_dir


@pytest.fixture
def initialized(config_dir, tmp_path):
    result = runner.invoke(
        cli_app.app, ["init", "--output-dir", str(tmp_path / "out"), "--force"]
    )
    assert result.exit_code == 0, result.output
    return config_dir


class ScriptedRunner:
    """Stands in for the subprocess runner; app 20 always fails."""

    instances = []

    def __init__(self, config, bus, template_store=None):
        self.bus = bus
        self.requests = []
        ScriptedRunner.instances.append(self)

    async def get_output_folder(self):
        return "/srv/depots"

    async def run_download(self, request):
        self.requests.append(request)
        cid = f"cid-{len(self.requests)}"
        self.bus.publish_log(f"Downloading {request.app_id}", job_id=cid)
        self.bus.publish_status(
            "exited", 2 if request.app_id == "20" else 0, job_id=cid
        )
        return cid

    async def wait_closed(self):
        pass

    async def cancel_download(self):
        pass

    async def cancel_compression(self):
        pass

    async def submit_email_code(self, code):
        pass

    async def resolve_output_conflict(self, job_id, choice):
        pass


@pytest.fixture
def scripted_runner(monkeypatch):
    ScriptedRunner.instances = []
    monkeypatch.setattr(cli_app, "SubprocessRunner", ScriptedRunner)
    return ScriptedRunner


def test_version():
    result = runner.invoke(cli_app.app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_init_and_validate(initialized):
    assert (initialized / "config.ini").is_file()
    result = runner.invoke(cli_app.app, ["validate"])
    assert result.exit_code == 0
    assert "Validated Settings" in result.output


def test_init_refuses_overwrite_without_confirmation(initialized):
    result = runner.invoke(cli_app.app, ["init"], input="n\n")
    assert result.exit_code == 1


def test_validate_without_config(config_dir):
    result = runner.invoke(cli_app.app, ["validate"])
    assert result.exit_code == 1
    assert "Configuration is invalid" in result.output


def test_show_config_masks_password(config_dir, tmp_path):
    runner.invoke(
        cli_app.app,
        [
            "init",
            "--output-dir",
            str(tmp_path / "out"),
            "--compression-password",
            "topsecret",
            "--force",
        ],
    )
    result = runner.invoke(cli_app.app, ["--show-config"])
    assert result.exit_code == 0
    assert "topsecret" not in result.output


def test_template_init(config_dir):
    result = runner.invoke(cli_app.app, ["template-init"])
    assert result.exit_code == 0
    assert (config_dir / "template.json").is_file()

    assert runner.invoke(cli_app.app, ["template-init"]).exit_code == 1
    assert runner.invoke(cli_app.app, ["template-init", "--force"]).exit_code == 0


def test_render_template_to_file(config_dir, tmp_path):
    metadata_file = tmp_path / "metadata.json"
    metadata_file.write_text(EXAMPLE_METADATA.model_dump_json(), encoding="utf-8")
    output = tmp_path / "release" / "Balatro.txt"

    result = runner.invoke(
        cli_app.app, ["render-template", str(metadata_file), "-o", str(output)]
    )

    assert result.exit_code == 0, result.output
    assert output.read_text(encoding="utf-8") == render_template(
        default_template(), EXAMPLE_METADATA
    )


def test_render_template_with_custom_template(config_dir, tmp_path):
    metadata_file = tmp_path / "metadata.json"
    metadata_file.write_text(EXAMPLE_METADATA.model_dump_json(), encoding="utf-8")
    template_file = tmp_path / "short.json"
    template_file.write_text(
        json.dumps(
            {
                "version": 1,
                "blocks": [{"type": "title", "config": {"template": "{{game_name}}"}}],
            }
        ),
        encoding="utf-8",
    )
    output = tmp_path / "out.txt"

    result = runner.invoke(
        cli_app.app,
        [
            "render-template",
            str(metadata_file),
            "-t",
            str(template_file),
            "-o",
            str(output),
        ],
    )

    assert result.exit_code == 0, result.output
    assert output.read_text(encoding="utf-8") == "Balatro"


def test_render_template_missing_template(config_dir, tmp_path):
    metadata_file = tmp_path / "metadata.json"
    metadata_file.write_text(EXAMPLE_METADATA.model_dump_json(), encoding="utf-8")

    result = runner.invoke(
        cli_app.app,
        ["render-template", str(metadata_file), "-t", str(tmp_path / "none.json")],
    )

    assert result.exit_code != 0
    assert isinstance(result.exception, TemplateError)


def test_login_save_show_delete(config_dir):
    result = runner.invoke(cli_app.app, ["login", "save", "alice"], input="hunter2\n")
    assert result.exit_code == 0, result.output
    saved = LoginStore(config_dir).load()
    assert (saved.username, saved.password) == ("alice", "hunter2")

    result = runner.invoke(cli_app.app, ["login", "show"])
    assert "alice" in result.output
    assert "hunter2" not in result.output

    assert runner.invoke(cli_app.app, ["login", "delete"]).exit_code == 0
    assert LoginStore(config_dir).load() is None


def test_run_uses_saved_login(initialized, scripted_runner):
    LoginStore(initialized).save("alice", "hunter2")

    result = runner.invoke(cli_app.app, ["run", "10", "--quiet"])

    assert result.exit_code == 0, result.output
    (request,) = scripted_runner.instances[0].requests
    assert (request.app_id, request.username, request.password) == (
        "10",
        "alice",
        "hunter2",
    )
    assert "Queue Complete" in result.output


def test_run_processes_queue_in_order(initialized, scripted_runner):
    result = runner.invoke(cli_app.app, ["run", "10", "20", "30", "--no-qr"])

    assert result.exit_code == 1
    requests = scripted_runner.instances[0].requests
    assert [r.app_id for r in requests] == ["10", "20", "30"]
    assert "Finished With Errors" in result.output


def test_run_rejects_non_numeric_app_id(initialized, scripted_runner):
    result = runner.invoke(cli_app.app, ["run", "portal"])
    assert result.exit_code == 2
    assert scripted_runner.instances == []


def test_entry_point_prints_error_panel(monkeypatch, capsys):
    from depot_packer import __main__ as entry
    from depot_packer.exceptions import ConfigurationError

    def failing_app():
        raise ConfigurationError("config.ini is broken")

    monkeypatch.setattr(entry, "app", failing_app)
    with pytest.raises(SystemExit) as excinfo:
        entry.main()

    assert excinfo.value.code == 1
    assert "config.ini is broken" in capsys.readouterr().err
