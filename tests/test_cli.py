"""Tests for CLI commands."""

import json

import pytest
from click.testing import CliRunner

from mpm.cli import cli
from mpm.core.hashing import ContentHash
from mpm.core.lockfile import LockedPlugin, Lockfile
from mpm.core.manifest import Manifest, SourceKind
from mpm.sources.registry import SourceRegistry


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def invoke(runner, temp_dir):
    """Invoke the CLI rooted at the temp directory."""

    def _invoke(*args):
        return runner.invoke(cli, ["--dir", str(temp_dir), *args])

    return _invoke


@pytest.fixture
def offline(mocker, fake_resolver, fake_downloader, make_candidate):
    """Replace the network: a Modrinth serving luckperms and worldedit, plus a CDN."""
    luckperms = make_candidate("5.4.102", runtimes=["1.20.1"], content=b"lp", file_name="LuckPerms.jar")
    worldedit = make_candidate("7.3.0", runtimes=["1.20.4"], content=b"we", file_name="worldedit.jar")
    modrinth = fake_resolver(SourceKind.MODRINTH, {
        "luckperms": [luckperms],
        "worldedit": [worldedit],
    })
    downloader = fake_downloader({
        luckperms.download_url: b"lp",
        worldedit.download_url: b"we",
    })

    client = mocker.MagicMock()
    client.__aenter__.return_value = downloader
    mocker.patch("mpm.cli.HttpClient", return_value=client)
    mocker.patch(
        "mpm.cli.SourceRegistry.default",
        return_value=SourceRegistry({SourceKind.MODRINTH: modrinth}),
    )
    return downloader


def test_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "mpm" in result.output


# =============================================================================
# init
# =============================================================================

def test_init_creates_manifest(invoke, temp_dir):
    result = invoke("init", "1.20.1")

    assert result.exit_code == 0
    manifest = Manifest.load(temp_dir / "plugins.toml")
    assert manifest.runtime_version == "1.20.1"
    assert manifest.requirements == {}


def test_init_is_noop_when_manifest_exists(invoke, temp_dir):
    invoke("init", "1.20.1")
    before = (temp_dir / "plugins.toml").read_bytes()

    result = invoke("init", "1.21")

    assert result.exit_code == 0
    assert "already exists" in result.output
    assert (temp_dir / "plugins.toml").read_bytes() == before


def test_init_detects_runtime(invoke, temp_dir):
    (temp_dir / "paper-1.20.4-496.jar").write_bytes(b"")
    invoke("init")
    assert Manifest.load(temp_dir / "plugins.toml").runtime_version == "1.20.4"


def test_init_falls_back_to_default_runtime(invoke, temp_dir):
    from mpm.core.metadata import DEFAULT_RUNTIME_VERSION

    invoke("init")
    assert Manifest.load(temp_dir / "plugins.toml").runtime_version == DEFAULT_RUNTIME_VERSION


# =============================================================================
# add / remove
# =============================================================================

def test_add_resolves_and_locks(invoke, temp_dir, offline):
    invoke("init", "1.20.1")

    result = invoke("add", "modrinth:luckperms")

    assert result.exit_code == 0, result.output
    manifest = Manifest.load(temp_dir / "plugins.toml")
    assert manifest.requirements["luckperms"].source is SourceKind.MODRINTH
    assert Lockfile.load(temp_dir / "plugins.lock").get("luckperms").version == "5.4.102"


def test_add_no_update_leaves_lockfile_alone(invoke, temp_dir, offline):
    invoke("init", "1.20.1")

    result = invoke("add", "luckperms", "--name", "perms", "--no-update")

    assert result.exit_code == 0, result.output
    assert "perms" in Manifest.load(temp_dir / "plugins.toml").requirements
    assert not (temp_dir / "plugins.lock").exists()


def test_add_incompatible_writes_nothing(invoke, temp_dir, offline):
    invoke("init", "1.20.1")
    before = (temp_dir / "plugins.toml").read_bytes()

    result = invoke("add", "modrinth:worldedit@7.3.0")

    assert result.exit_code == 2
    assert (temp_dir / "plugins.toml").read_bytes() == before
    assert not (temp_dir / "plugins.lock").exists()


def test_add_invalid_spec(invoke):
    invoke("init", "1.20.1")
    result = invoke("add", "spigot:worldedit")
    assert result.exit_code == 2


def test_add_without_manifest(invoke, offline):
    result = invoke("add", "luckperms")
    assert result.exit_code == 2


def test_remove_no_update(invoke, temp_dir, offline):
    invoke("init", "1.20.1")
    invoke("add", "luckperms", "--no-update")

    result = invoke("remove", "luckperms", "--no-update")

    assert result.exit_code == 0
    assert Manifest.load(temp_dir / "plugins.toml").requirements == {}


def test_remove_relocks(invoke, temp_dir, offline):
    invoke("init", "1.20.1")
    invoke("add", "luckperms")

    result = invoke("remove", "luckperms")

    assert result.exit_code == 0, result.output
    assert len(Lockfile.load(temp_dir / "plugins.lock")) == 0


def test_remove_unknown_plugin(invoke):
    invoke("init", "1.20.1")
    result = invoke("remove", "ghost")
    assert result.exit_code == 2


# =============================================================================
# lock / sync
# =============================================================================

def test_lock_dry_run_then_write(invoke, temp_dir, offline):
    invoke("init", "1.20.1")
    invoke("add", "luckperms", "--no-update")

    result = invoke("lock", "--dry-run", "--json")
    assert result.exit_code == 1
    data = json.loads(result.stdout)
    assert data["changes_pending"] is True
    assert data["written"] is False
    assert not (temp_dir / "plugins.lock").exists()

    result = invoke("lock")
    assert result.exit_code == 0, result.output
    assert (temp_dir / "plugins.lock").exists()

    result = invoke("lock", "--dry-run")
    assert result.exit_code == 0


def test_lock_failure_exit_code(invoke, temp_dir, offline):
    invoke("init", "1.20.1")
    (temp_dir / "plugins.toml").write_text(
        '[minecraft]\nversion = "1.20.1"\n\n[plugins.worldedit]\nid = "worldedit"\nversion = "7.3.0"\n'
    )

    result = invoke("lock")

    assert result.exit_code == 2
    assert not (temp_dir / "plugins.lock").exists()


def test_sync_places_files(invoke, temp_dir, offline):
    invoke("init", "1.20.1")
    invoke("add", "luckperms")
    plugins = temp_dir / "plugins"
    plugins.mkdir()
    (plugins / "extra.jar").write_bytes(b"extra")

    result = invoke("sync", "--dry-run", "--json")
    assert result.exit_code == 1
    plan = json.loads(result.stdout)
    assert plan["to_remove"] == ["extra.jar"]
    assert [p["name"] for p in plan["to_fetch"]] == ["luckperms"]

    result = invoke("sync")
    assert result.exit_code == 0, result.output
    assert sorted(p.name for p in plugins.iterdir()) == ["LuckPerms.jar"]

    result = invoke("sync", "--dry-run")
    assert result.exit_code == 0


def test_sync_without_lockfile(invoke):
    invoke("init", "1.20.1")
    result = invoke("sync")
    assert result.exit_code == 2


# =============================================================================
# doctor
# =============================================================================

def _write_healthy(temp_dir):
    plugins = temp_dir / "plugins"
    plugins.mkdir()
    (plugins / "a.jar").write_bytes(b"a")
    (temp_dir / "plugins.toml").write_text('[minecraft]\nversion = "1.20.1"\n\n[plugins.a]\nid = "a"\n')
    Lockfile([
        LockedPlugin(
            name="a",
            source=SourceKind.MODRINTH,
            version="1.0",
            file_name="a.jar",
            download_url="https://cdn/a.jar",
            content_hash=ContentHash.of_bytes(b"a"),
        )
    ]).save(temp_dir / "plugins.lock")
    return plugins


def test_doctor_healthy(invoke, temp_dir):
    _write_healthy(temp_dir)
    result = invoke("doctor")
    assert result.exit_code == 0
    assert "consistent" in result.output


def test_doctor_extra_jar_json(invoke, temp_dir):
    plugins = _write_healthy(temp_dir)
    (plugins / "extra.jar").write_bytes(b"extra")

    result = invoke("doctor", "--json")

    assert result.exit_code == 1
    data = json.loads(result.stdout)
    assert data["status"] == "warning"
    assert [(f["code"], f["subject"]) for f in data["findings"]] == [("unmanaged-file", "extra.jar")]


def test_doctor_nothing_set_up(invoke):
    result = invoke("doctor", "--json")
    assert result.exit_code == 2
    codes = {f["code"] for f in json.loads(result.stdout)["findings"]}
    assert {"manifest-missing", "lockfile-missing"} <= codes


# =============================================================================
# import
# =============================================================================

def test_import(invoke, temp_dir, make_jar):
    plugins = temp_dir / "plugins"
    plugins.mkdir()
    make_jar(plugins, "a.jar", name="A", version="1.0.0")

    result = invoke("import", "--version", "1.20.1")

    assert result.exit_code == 0, result.output
    assert Manifest.load(temp_dir / "plugins.toml").requirements["A"].source is SourceKind.UNKNOWN
    assert invoke("doctor").exit_code == 0


def test_import_partial_failure(invoke, temp_dir, make_jar):
    plugins = temp_dir / "plugins"
    plugins.mkdir()
    make_jar(plugins, "a.jar", name="A")
    (plugins / "broken.jar").write_bytes(b"garbage")

    result = invoke("import", "--version", "1.20.1")

    assert result.exit_code == 1
    assert len(Lockfile.load(temp_dir / "plugins.lock")) == 1


def test_import_refuses_existing_manifest(invoke, temp_dir):
    (temp_dir / "plugins").mkdir()
    invoke("init", "1.20.1")
    result = invoke("import")
    assert result.exit_code == 2
    assert not (temp_dir / "plugins.lock").exists()
