from typer.testing import CliRunner

from nahcloud.cli.cli import app, render_bindings

runner = CliRunner()


def test_render_bindings():
    result = render_bindings("prod", 9000)

    assert 'backend "http"' in result
    assert 'address = "http://localhost:9000/tfstate/prod"' in result
    assert 'lock_address = "http://localhost:9000/tfstate/prod"' in result
    assert 'lock_method = "LOCK"' in result
    assert 'unlock_method = "UNLOCK"' in result


def test_print_bindings_command():
    result = runner.invoke(app, ["print-bindings", "main", "--port", "8123"])

    assert result.exit_code == 0
    assert 'address = "http://localhost:8123/tfstate/main"' in result.output
