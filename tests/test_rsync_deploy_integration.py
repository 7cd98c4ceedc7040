import json
import os
import subprocess
import sys
from pathlib import Path

import pytest
import rsync_deploy as rd


FAKE_RSYNC = """#!{python}
import json, os, sys
with open(os.environ["FAKE_RSYNC_LOG"], "a") as fh:
    fh.write(json.dumps(sys.argv[1:]) + "\\n")
sys.stdout.buffer.write(bytes.fromhex(os.environ.get("FAKE_RSYNC_OUTPUT", "")))
sys.stdout.flush()
sys.exit(int(os.environ.get("FAKE_RSYNC_EXIT", "0")))
"""


# ─────────────────────────────────────────────────────────────────────
# Shared fixtures: a fake rsync first on $PATH and a small site
# ─────────────────────────────────────────────────────────────────────
@pytest.fixture
def fake_rsync(tmp_path, monkeypatch):
    """Put a recording rsync stand-in on $PATH and return its log file."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "rsync"
    script.write_text(FAKE_RSYNC.format(python=sys.executable))
    script.chmod(0o755)

    log = tmp_path / "rsync.log"
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    monkeypatch.setenv("FAKE_RSYNC_LOG", str(log))
    return log


@pytest.fixture
def site(tmp_path):
    """A site directory with a public/ folder and an rsync deploy section."""
    root = tmp_path / "site"
    (root / "public").mkdir(parents=True)
    (root / "public" / "index.html").write_text("<h1>Hello</h1>")
    (root / "_config.yml").write_text(
        "public_dir: public\n"
        "deploy:\n"
        "  - type: git\n"
        "    repo: git@example.com:blog.git\n"
        "  - type: rsync\n"
        "    host: example.com\n"
        "    user: deployer\n"
        "    root: /var/www/blog\n"
        "    port: 2222\n"
        "    create_before_update: true\n"
    )
    return root


def runs(log: Path) -> list:
    return [json.loads(line) for line in log.read_text().splitlines()]


@pytest.mark.integration
@pytest.mark.skipif(sys.platform == "win32", reason="fake rsync needs a POSIX shebang")
class TestIntegration:
    def test_main_runs_both_passes(self, fake_rsync, site, capsys):
        rd.main(["-c", str(site / "_config.yml")])

        first, second = runs(fake_rsync)
        assert "--ignore-existing" in first
        assert "--ignore-existing" not in second
        assert "ssh -p 2222" in second
        assert second[-2] == str(site.resolve() / "public") + os.sep
        assert second[-1] == "deployer@example.com:/var/www/blog"
        assert "✅ Deploy done." in capsys.readouterr().out

    def test_main_dry_run(self, fake_rsync, site):
        rd.main(["-c", str(site / "_config.yml"), "-n"])

        assert all("--dry-run" in run for run in runs(fake_rsync))

    def test_main_public_dir_override(self, fake_rsync, site, tmp_path):
        out_dir = tmp_path / "elsewhere"
        out_dir.mkdir()
        rd.main(["-c", str(site / "_config.yml"), "-p", str(out_dir)])

        assert runs(fake_rsync)[-1][-2] == str(out_dir) + os.sep

    def test_main_public_dir_override_keeps_single_slash(self, fake_rsync, site, tmp_path):
        out_dir = tmp_path / "elsewhere"
        out_dir.mkdir()
        rd.main(["-c", str(site / "_config.yml"), "-p", str(out_dir) + os.sep])

        source = runs(fake_rsync)[-1][-2]
        assert source.endswith(os.sep)
        assert not source.endswith(os.sep * 2)

    def test_main_rsync_failure(self, fake_rsync, site, monkeypatch, capsys):
        monkeypatch.setenv("FAKE_RSYNC_EXIT", "23")

        with pytest.raises(SystemExit) as excinfo:
            rd.main(["-c", str(site / "_config.yml")])

        assert excinfo.value.code == 23
        assert len(runs(fake_rsync)) == 1
        assert capsys.readouterr().out.count("rsync exited with code 23") == 1

    def test_quiet_run_with_undecodable_output(self, fake_rsync, monkeypatch):
        """File names that are not valid UTF-8 do not break a quiet run."""
        monkeypatch.setenv("FAKE_RSYNC_OUTPUT", b"caf\xe9.html\n".hex())

        rd.spawn("rsync", ["-az"], verbose=False)

        assert runs(fake_rsync) == [["-az"]]

    def test_quiet_failure_with_undecodable_output(self, fake_rsync, monkeypatch):
        monkeypatch.setenv("FAKE_RSYNC_OUTPUT", b"caf\xe9.html\n".hex())
        monkeypatch.setenv("FAKE_RSYNC_EXIT", "23")

        with pytest.raises(rd.DeployError) as excinfo:
            rd.spawn("rsync", ["-az"], verbose=False)

        assert excinfo.value.returncode == 23
        assert "caf�.html" in str(excinfo.value)

    def test_main_without_deploy_section(self, fake_rsync, tmp_path, capsys):
        cfg = tmp_path / "_config.yml"
        cfg.write_text("title: My blog\n")

        with pytest.raises(SystemExit) as excinfo:
            rd.main(["-c", str(cfg)])

        assert excinfo.value.code == 1
        assert "configure deployment settings" in capsys.readouterr().out
        assert not fake_rsync.exists()

    def test_main_missing_config(self, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            rd.main(["-c", str(tmp_path / "missing.yml")])

        assert excinfo.value.code == 1

    def test_module_entry_point(self, fake_rsync, site):
        src_dir = Path(__file__).parent.parent / "src"
        env = dict(os.environ)
        env["PYTHONPATH"] = f"{src_dir}{os.pathsep}{env.get('PYTHONPATH', '')}"
        env["PYTHONIOENCODING"] = "utf-8"

        result = subprocess.run(
            [sys.executable, "-m", "rsync_deploy", "-c", str(site / "_config.yml")],
            capture_output=True,
            text=True,
            env=env,
        )

        assert result.returncode == 0, result.stdout + result.stderr
        assert "✅ Deploy done." in result.stdout
        assert len(runs(fake_rsync)) == 2
