"""End to end tests for the dredge command line"""

import asyncio
import json

import httpx
import pytest
import yaml

from conftest import REGISTRY_URL, ScriptedRegistry, registry_response
from dredge import EXIT_ERROR, EXIT_OK, EXIT_UNSUPPORTED, load_config, main, parse_arguments
from mock_data import MockRegistryData
from registry_errors import ConfigError


@pytest.fixture
def run(config_file, capsys):
    """Run dredge against the test config file, returning (code, stdout, stderr)"""
    def runner(*argv, transport=None):
        code = main(["--config", str(config_file), *argv], transport=transport)
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    return runner


def test_catalog(run):
    code, out, _ = run("--mock", "catalog")
    assert code == EXIT_OK
    assert out.splitlines() == sorted(MockRegistryData().repositories)


def test_catalog_with_page_size(run):
    code, out, _ = run("--mock", "catalog", "-n", "2")
    assert code == EXIT_OK
    assert out.splitlines() == sorted(MockRegistryData().repositories)


def test_tags(run):
    code, out, _ = run("--mock", "tags", "library/ubuntu")
    assert code == EXIT_OK
    assert out.splitlines() == ["20.04", "22.04", "latest"]


def test_tags_of_repository_without_tags(run):
    code, out, _ = run("--mock", "tags", "empty")
    assert code == EXIT_OK
    assert out == ""


def test_tags_of_unknown_repository(run):
    code, out, err = run("--mock", "tags", "missing")
    assert code == EXIT_ERROR
    assert out == ""
    assert "Error: Resource not found" in err


def test_show_json(run):
    code, out, _ = run("--mock", "show", "alpine", "latest", "-o", "json")
    assert code == EXIT_OK

    shown = json.loads(out)
    digest = MockRegistryData().manifest_digest("alpine", "latest")
    assert shown["name"] == "alpine"
    assert shown["digest"] == digest
    assert shown["etag"] == digest
    assert shown["manifest"]["schemaVersion"] == 2


def test_show_yaml_defaults_to_latest(run):
    code, out, _ = run("--mock", "show", "redis")
    assert code == EXIT_OK

    shown = yaml.safe_load(out)
    assert shown["reference"] == "latest"
    assert shown["digest"] == MockRegistryData().manifest_digest("redis", "latest")


def test_show_unknown_tag(run):
    code, _, err = run("--mock", "show", "alpine", "2.0")
    assert code == EXIT_ERROR
    assert "Error: Resource not found" in err


def test_delete_is_not_supported(run):
    code, out, err = run("--mock", "delete", "alpine", "latest")
    assert code == EXIT_UNSUPPORTED
    assert out == ""
    assert "not supported" in err


def test_check(run):
    code, out, _ = run("--mock", "check")
    assert code == EXIT_OK
    assert out == "Ok\n"


def test_check_unsupported_version(run):
    registry = ScriptedRegistry(
        registry_response(version=False, headers={"Docker-Distribution-API-Version": "registry/1.0"})
    )
    code, _, err = run("check", transport=httpx.MockTransport(registry))
    assert code == EXIT_ERROR
    assert "Error: Version Mismatch registry/1.0" in err


def test_registry_from_config_file(run):
    registry = ScriptedRegistry(registry_response(body={"name": "nginx", "tags": ["latest"]}))
    code, out, _ = run("tags", "nginx", transport=httpx.MockTransport(registry))
    assert code == EXIT_OK
    assert out == "latest\n"
    assert str(registry.requests[0].url) == f"{REGISTRY_URL}/v2/nginx/tags/list"


def test_registry_flag_overrides_config_file(run):
    registry = ScriptedRegistry(registry_response(body={}))
    code, _, _ = run("-r", "other.test:5000", "check", transport=httpx.MockTransport(registry))
    assert code == EXIT_OK
    assert str(registry.requests[0].url) == "https://other.test:5000/v2"


def test_invalid_registry_url(run):
    code, _, err = run("-r", "ftp://registry.test", "check")
    assert code == EXIT_ERROR
    assert "Invalid registry URL" in err


def test_missing_config_file(tmp_path, capsys):
    code = main(["--config", str(tmp_path / "missing.json"), "--mock", "check"])
    assert code == EXIT_ERROR
    assert "Config file not found" in capsys.readouterr().err


def test_deadline(run):
    async def slow(request):
        await asyncio.sleep(5)
        return registry_response(body={})

    code, _, err = run("--deadline", "0.05", "check", transport=httpx.MockTransport(slow))
    assert code == EXIT_ERROR
    assert "check did not finish within 0.05 seconds" in err


def test_load_config_precedence(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "registry_url": REGISTRY_URL,
        "page_size": 10,
        "timeout": 5,
        "max_pages": 20,
        "log_level": "warn",
    }))

    config = load_config(parse_arguments(["--config", str(path), "catalog"]))
    assert config.registry_url == REGISTRY_URL
    assert config.page_size == 10
    assert config.timeout == 5
    assert config.log_level == "warn"

    args = parse_arguments([
        "--config", str(path),
        "--registry", "other.test",
        "--timeout", "1.5",
        "--max-pages", "3",
        "--log-level", "debug",
        "--insecure",
        "catalog", "-n", "100",
    ])
    config = load_config(args)
    assert config.registry_url == "other.test"
    assert config.page_size == 100
    assert config.timeout == 1.5
    assert config.max_pages == 3
    assert config.log_level == "debug"
    assert config.verify_tls is False


def test_invalid_override_is_rejected(config_file):
    args = parse_arguments(["--config", str(config_file), "--max-pages", "0", "catalog"])
    with pytest.raises(ConfigError, match="max_pages"):
        load_config(args)


def test_command_is_required():
    with pytest.raises(SystemExit):
        parse_arguments([])


def test_redirect_loop_is_reported(run):
    def redirect_to_self(request):
        return httpx.Response(302, headers={"Location": str(request.url)})

    code, _, err = run("catalog", transport=httpx.MockTransport(redirect_to_self))
    assert code == EXIT_ERROR
    assert err.startswith("Error: Request to ")


@pytest.mark.parametrize("deadline", ["0", "-1"])
def test_non_positive_deadline_is_rejected(run, deadline):
    code, out, err = run("--mock", "--deadline", deadline, "check")
    assert code == EXIT_ERROR
    assert out == ""
    assert "deadline must be a positive number" in err
