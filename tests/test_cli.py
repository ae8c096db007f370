"""Tests for the CLI, mostly run as a subprocess against the sandbox provider."""

import json
import os
import subprocess
import sys
from unittest.mock import patch

import pytest

from conftest import chain_stack

from apigw_ops import cli
from apigw_ops.exceptions import SynthesisStalled
from apigw_ops.stack_reader import ref, write_stack


def run_cli(*args, env=None):
    """Run apigw-ops CLI as a subprocess and return (returncode, stdout, stderr)."""
    full_env = dict(os.environ)
    for key in list(full_env):
        if key.startswith("APIGW_"):
            del full_env[key]
    full_env.update(env or {})
    result = subprocess.run(
        [sys.executable, "-m", "apigw_ops.cli", *args],
        capture_output=True, text=True, timeout=60, env=full_env,
    )
    return result.returncode, result.stdout, result.stderr


@pytest.fixture
def workspace(tmp_path):
    """Paths for stack, state and sandbox files, plus the matching CLI flags."""
    paths = {
        "stack": str(tmp_path / "stack.json"),
        "state": str(tmp_path / "state.json"),
        "sandbox": str(tmp_path / "sandbox.json"),
    }
    paths["common"] = ["--stack-file", paths["stack"], "--state-file", paths["state"]]
    paths["provider"] = ["--provider", "sandbox", "--sandbox-file", paths["sandbox"],
                         "--poll-interval", "0"]
    return paths


def _init(workspace, stack=None):
    write_stack(stack or chain_stack(), workspace["stack"])
    rc, out, err = run_cli("init", *workspace["common"])
    assert rc == 0, err


def _read_state(workspace):
    with open(workspace["state"]) as f:
        return json.load(f)


class TestInit:
    # Tests that init creates an empty state file.
    def test_init_state(self, workspace):
        rc, out, err = run_cli("init", *workspace["common"], "--stack-name", "demo")
        assert rc == 0
        assert "Initialized" in out
        state = _read_state(workspace)
        assert state["version"] == 1
        assert state["stack"] == "demo"
        assert state["resources"] == {}

    # Tests that init refuses to overwrite existing state without --force.
    def test_init_existing_state(self, workspace):
        run_cli("init", *workspace["common"])
        rc, out, err = run_cli("init", *workspace["common"])
        assert rc == 1
        assert "already exists" in err

    # Tests that init --domain writes the API stack template.
    def test_init_domain_writes_template(self, workspace):
        rc, out, err = run_cli("init", *workspace["common"],
                               "--domain", "example.com", "--hosted-zone-id", "Z123")
        assert rc == 0, err
        with open(workspace["stack"]) as f:
            stack = json.load(f)
        assert stack["resources"]["ApiRecord"]["properties"]["recordName"] == "api.example.com"

    # Tests that --domain without a hosted zone is a validation error.
    def test_init_domain_requires_zone(self, workspace):
        rc, out, err = run_cli("init", *workspace["common"], "--domain", "example.com")
        assert rc == 1
        assert "--hosted-zone-id" in err


class TestPlan:
    # Tests that plan without state exits 1.
    def test_plan_missing_state(self, workspace):
        write_stack(chain_stack(), workspace["stack"])
        rc, out, err = run_cli("plan", *workspace["common"])
        assert rc == 1
        assert "State file not found" in err

    # Tests that plan with changes exits 0 and lists batches.
    def test_plan_with_changes(self, workspace):
        _init(workspace)
        rc, out, err = run_cli("plan", *workspace["common"])
        assert rc == 0
        assert "Plan: 4 to create" in out
        assert "Batch 4:" in out

    # Tests that a cyclic stack is a validation error.
    def test_plan_cycle_exits_1(self, workspace):
        stack = chain_stack()
        stack["resources"]["Cert"]["properties"]["domainName"] = ref("Record", "fqdn")
        _init(workspace, stack)
        rc, out, err = run_cli("plan", *workspace["common"])
        assert rc == 1
        assert "Dependency cycle detected" in err

    # Tests that a reference to an undeclared resource is a validation error.
    def test_plan_unresolved_exits_1(self, workspace):
        stack = chain_stack()
        stack["resources"]["Domain"]["properties"]["certificateArn"] = ref("Missing", "arn")
        _init(workspace, stack)
        rc, out, err = run_cli("plan", *workspace["common"])
        assert rc == 1
        assert "unknown resource 'Missing'" in err

    # Tests that corrupted state is refused unless --ignore-checksum is given.
    def test_plan_checksum(self, workspace):
        _init(workspace)
        state = _read_state(workspace)
        state["resources"]["Ghost"] = {"type": "Role", "identifier": "x", "outputs": {}}
        with open(workspace["state"], "w") as f:
            json.dump(state, f)
        rc, out, err = run_cli("plan", *workspace["common"])
        assert rc == 1
        assert "checksum mismatch" in err
        rc, out, err = run_cli("plan", *workspace["common"], "--ignore-checksum")
        assert rc == 0
        assert "Ghost" in out


class TestApply:
    # Tests that apply provisions the stack, then a second apply has nothing to do.
    def test_apply_then_noop(self, workspace):
        _init(workspace)
        rc, out, err = run_cli("apply", *workspace["common"], *workspace["provider"], "--auto-approve")
        assert rc == 0, err
        assert "Apply complete!" in out
        state = _read_state(workspace)
        assert sorted(state["resources"]) == ["Cert", "Deployment", "Domain", "Record"]
        assert state["run"]["status"] == "completed"
        assert not os.path.exists(workspace["state"] + ".lock")

        rc, out, err = run_cli("apply", *workspace["common"], *workspace["provider"], "--auto-approve")
        assert rc == 0
        assert "No changes" in out

    # Tests that a saved plan applies, and is refused once the stack changes.
    def test_apply_saved_plan(self, workspace, tmp_path):
        _init(workspace)
        plan_file = str(tmp_path / "plan.json")
        run_cli("plan", *workspace["common"], "--out", plan_file)
        stack = chain_stack()
        stack["resources"]["Cert"]["properties"]["domainName"] = "example.org"
        write_stack(stack, workspace["stack"])
        rc, out, err = run_cli("apply", *workspace["common"], *workspace["provider"],
                               "--plan", plan_file, "--auto-approve")
        assert rc == 1
        assert "does not match" in err

    # Tests that a missing plan file is an error.
    def test_apply_missing_plan_file(self, workspace, tmp_path):
        _init(workspace)
        rc, out, err = run_cli("apply", *workspace["common"], *workspace["provider"],
                               "--plan", str(tmp_path / "nope.json"), "--auto-approve")
        assert rc == 1

    # Tests that the rest provider needs an endpoint.
    def test_apply_rest_requires_endpoint(self, workspace):
        _init(workspace)
        rc, out, err = run_cli("apply", *workspace["common"], "--provider", "rest", "--auto-approve")
        assert rc == 1
        assert "APIGW_ENDPOINT" in err

    # Tests that a readiness timeout ends in partial failure (exit 2), and resume finishes it.
    def test_partial_failure_then_resume(self, workspace):
        _init(workspace)
        rc, out, err = run_cli("apply", *workspace["common"], *workspace["provider"],
                               "--timeout", "0", "--auto-approve")
        assert rc == 2
        state = _read_state(workspace)
        assert state["run"]["status"] == "partially_failed"
        assert state["run"]["failed"] == ["Cert"]

        rc, out, err = run_cli("resume", *workspace["common"], *workspace["provider"])
        assert rc == 0, err
        assert _read_state(workspace)["run"]["status"] == "completed"

    # Tests that a held lock stops apply.
    def test_locked_state(self, workspace):
        _init(workspace)
        open(workspace["state"] + ".lock", "w").close()
        rc, out, err = run_cli("apply", *workspace["common"], *workspace["provider"], "--auto-approve")
        assert rc == 1
        assert "locked" in err
        rc, out, err = run_cli("force-unlock", *workspace["common"])
        assert rc == 0
        assert not os.path.exists(workspace["state"] + ".lock")


class TestTeardown:
    # Tests that rollback deletes everything the last apply created.
    def test_rollback(self, workspace):
        _init(workspace)
        run_cli("apply", *workspace["common"], *workspace["provider"], "--auto-approve")
        rc, out, err = run_cli("rollback", *workspace["common"], *workspace["provider"])
        assert rc == 0, err
        state = _read_state(workspace)
        assert state["resources"] == {}
        assert state["run"]["status"] == "rolled_back"

    # Tests that destroy --target removes the target and its dependents only.
    def test_destroy_target(self, workspace):
        _init(workspace)
        run_cli("apply", *workspace["common"], *workspace["provider"], "--auto-approve")
        rc, out, err = run_cli("destroy", *workspace["common"], *workspace["provider"],
                               "--target", "Deployment", "--auto-approve")
        assert rc == 0, err
        assert sorted(_read_state(workspace)["resources"]) == ["Cert", "Domain"]


class TestGraph:
    # Tests that graph prints edges and batches.
    def test_graph(self, workspace):
        write_stack(chain_stack(), workspace["stack"])
        rc, out, err = run_cli("graph", "--stack-file", workspace["stack"])
        assert rc == 0
        assert "Domain -> Cert" in out
        assert "1. Cert" in out
        assert "4. Record" in out


class TestExitCodes:
    def _main(self, monkeypatch, *args):
        monkeypatch.setattr(sys, "argv", ["apigw-ops", *args])
        with pytest.raises(SystemExit) as exc:
            cli.main()
        return exc.value.code

    # Tests that a stalled synthesis is reported as an internal error (exit 3).
    def test_synthesis_stalled_exits_3(self, workspace, monkeypatch, capsys):
        write_stack(chain_stack(), workspace["stack"])
        with patch("apigw_ops.cli.synthesize", side_effect=SynthesisStalled(["Cert", "Domain"])):
            rc = self._main(monkeypatch, "graph", "--stack-file", workspace["stack"])
        assert rc == 3
        assert "Synthesis stalled" in capsys.readouterr().err

    # Tests that an unexpected exception is reported as an internal error (exit 3).
    def test_unexpected_error_exits_3(self, workspace, monkeypatch, capsys):
        write_stack(chain_stack(), workspace["stack"])
        with patch("apigw_ops.cli.synthesize", side_effect=RuntimeError("boom")):
            rc = self._main(monkeypatch, "graph", "--stack-file", workspace["stack"])
        assert rc == 3
        assert "Internal error: boom" in capsys.readouterr().err

    # Tests that an unknown log level is a usage error, not a traceback.
    def test_bad_log_level(self, workspace):
        write_stack(chain_stack(), workspace["stack"])
        rc, out, err = run_cli("graph", "--stack-file", workspace["stack"], "--log-level", "LOUD")
        assert rc == 1
        assert err.startswith("Error:")
        assert "Traceback" not in err
