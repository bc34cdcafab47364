from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
SCRIPT_PATH = REPO_ROOT / "scripts" / "seed_excluded_domains.py"


def _run_script(*args: str) -> subprocess.CompletedProcess[str]:
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(REPO_ROOT / "api"), env.get("PYTHONPATH")]))
    return subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        capture_output=True,
        text=True,
        env=env,
    )


def test_seed_script_emits_sorted_normalized_domains() -> None:
    completed = _run_script("WWW.Spam.example.com", "junk.example", "spam.example.com", "--actor", "ops")

    assert completed.returncode == 0, completed.stderr
    output = completed.stdout
    assert "insert into excluded_domains (domain_name, created_at, created_by)" in output
    assert "('junk.example', now(), 'ops'),\n  ('spam.example.com', now(), 'ops')" in output
    assert output.count("spam.example.com") == 1
    assert "on conflict (domain_name) do nothing;" in output


def test_seed_script_reads_domain_file_and_skips_invalid_entries(tmp_path: Path) -> None:
    domain_file = tmp_path / "domains.txt"
    domain_file.write_text("# blocked publishers\nclickbait.example\n\nco.uk\nhttps://bad.example/x\n", encoding="utf-8")

    completed = _run_script("--file", str(domain_file))

    assert completed.returncode == 0, completed.stderr
    assert "('clickbait.example', now(), 'system')" in completed.stdout
    assert "co.uk" not in completed.stdout
    assert "skipped co.uk" in completed.stderr
    assert "skipped https://bad.example/x" in completed.stderr


def test_seed_script_strict_mode_fails_on_invalid_entries() -> None:
    completed = _run_script("good.example", "*.wild.example", "--strict")

    assert completed.returncode == 2
    assert "invalid hostnames supplied with --strict" in completed.stderr
    assert completed.stdout == ""


def test_seed_script_quotes_actor_values() -> None:
    completed = _run_script("good.example", "--actor", "o'brien")

    assert completed.returncode == 0, completed.stderr
    assert "'o''brien'" in completed.stdout
