"""Tests for the terraform runner."""

import json
import os
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from azure_module_testkit.exceptions import (
    ConfigurationError,
    ModuleAssertionError,
    TerraformCommandError,
    TerraformTimeoutError,
    UnitCancelledError,
)
from azure_module_testkit.terraform.options import ModuleOptions, RetryPolicy
from azure_module_testkit.terraform.runner import TerraformRunner, deferred_destroy

RUN = "azure_module_testkit.terraform.runner.subprocess.run"


@pytest.fixture
def module_dir(tmp_path):
    path = tmp_path / "module"
    path.mkdir()
    (path / "main.tf").write_text('resource "azurerm_resource_group" "main" {}\n')
    return path


@pytest.fixture
def options(module_dir):
    return ModuleOptions(
        terraform_dir=module_dir,
        vars={
            "resource_group_name": "rg-test-vnet-ab12cd",
            "address_space": ["10.0.0.0/16"],
            "subnets": {"default": {"address_prefixes": ["10.0.1.0/24"]}},
        },
        env_vars={"ARM_SUBSCRIPTION_ID": "sub-1", "ARM_TENANT_ID": "tenant-1"},
    )


@pytest.fixture
def runner():
    return TerraformRunner(binary="terraform", sleep=MagicMock())


def _args(mock_run, call=0):
    return mock_run.call_args_list[call].args[0]


class TestInit:
    @patch(RUN)
    def test_init_command(self, mock_run, runner, options, completed):
        mock_run.return_value = completed(0, "Terraform has been successfully initialized!")

        runner.init(options)

        assert _args(mock_run) == ["terraform", "init", "-input=false", "-no-color"]
        kwargs = mock_run.call_args.kwargs
        assert kwargs["cwd"] == options.terraform_dir
        assert kwargs["capture_output"] is True
        assert kwargs["timeout"] > 0

    @patch(RUN)
    def test_environment_overrides_not_leaked(self, mock_run, runner, options, completed):
        mock_run.return_value = completed(0)
        before = os.environ.get("ARM_SUBSCRIPTION_ID")

        runner.init(options)

        env = mock_run.call_args.kwargs["env"]
        assert env["ARM_SUBSCRIPTION_ID"] == "sub-1"
        assert env["TF_IN_AUTOMATION"] == "1"
        assert os.environ.get("ARM_SUBSCRIPTION_ID") == before

    @patch(RUN)
    def test_lock_disabled(self, mock_run, runner, module_dir, completed):
        mock_run.return_value = completed(0)

        runner.init(ModuleOptions(terraform_dir=module_dir, lock=False))

        assert "-lock=false" in _args(mock_run)


class TestPlan:
    @patch(RUN)
    def test_plan_then_show_json(self, mock_run, runner, options, completed, plan_json, resource_json):
        seen_vars = {}

        def fake_run(cmd, **kwargs):
            if cmd[1] == "plan":
                var_file = next(a for a in cmd if a.startswith("-var-file="))
                seen_vars.update(json.loads(Path(var_file.split("=", 1)[1]).read_text()))
                return completed(0, "Plan: 1 to add")
            return completed(
                0,
                plan_json([resource_json("azurerm_virtual_network.main", {"name": "vnet"})]),
            )

        mock_run.side_effect = fake_run

        plan = runner.plan(options)

        plan_cmd, show_cmd = _args(mock_run, 0), _args(mock_run, 1)
        assert plan_cmd[:4] == ["terraform", "plan", "-input=false", "-no-color"]
        out_arg = next(a for a in plan_cmd if a.startswith("-out="))
        assert show_cmd == ["terraform", "show", "-json", "-no-color", out_arg.split("=", 1)[1]]
        assert seen_vars["subnets"] == {"default": {"address_prefixes": ["10.0.1.0/24"]}}
        assert plan.has_resource("azurerm_virtual_network.main")

    @patch(RUN)
    def test_temp_files_removed(self, mock_run, runner, options, completed, plan_json):
        mock_run.return_value = completed(0, plan_json([]))

        runner.plan(options)

        plan_cmd = _args(mock_run, 0)
        var_file = next(a for a in plan_cmd if a.startswith("-var-file=")).split("=", 1)[1]
        plan_file = next(a for a in plan_cmd if a.startswith("-out=")).split("=", 1)[1]
        assert not Path(var_file).exists()
        assert not Path(plan_file).exists()

    @patch(RUN)
    def test_plan_failure(self, mock_run, runner, options, completed):
        mock_run.return_value = completed(1, stderr='Error: Invalid value for variable "address_space"')

        with pytest.raises(TerraformCommandError, match="Invalid value"):
            runner.plan(options)

        assert mock_run.call_count == 1

    @patch(RUN)
    def test_plan_retries_transient_error(self, mock_run, runner, options, completed, plan_json):
        options.retry_policy = RetryPolicy(
            retryable_errors={".*TooManyRequests.*": "Azure throttling"}, max_retries=2
        )
        mock_run.side_effect = [
            completed(1, stderr="StatusCode=429 TooManyRequests"),
            completed(0, "Plan: 0 to add"),
            completed(0, plan_json([])),
        ]

        runner.plan(options)

        assert mock_run.call_count == 3
        runner._sleep.assert_called_once_with(5.0)


class TestApply:
    @patch(RUN)
    def test_apply_returns_outputs(self, mock_run, runner, options, completed):
        outputs = {
            "vnet_name": {"value": "vnet-test-ab12cd", "type": "string"},
            "subnet_ids": {"value": {"default": "/sub/default"}, "type": ["map", "string"]},
        }
        mock_run.side_effect = [completed(0, "Apply complete!"), completed(0, json.dumps(outputs))]

        result = runner.apply(options)

        assert _args(mock_run, 0)[:5] == [
            "terraform",
            "apply",
            "-auto-approve",
            "-input=false",
            "-no-color",
        ]
        assert _args(mock_run, 1) == ["terraform", "output", "-json", "-no-color"]
        assert result == {"vnet_name": "vnet-test-ab12cd", "subnet_ids": {"default": "/sub/default"}}

    @patch(RUN)
    def test_apply_parallelism(self, mock_run, runner, options, completed):
        options.parallelism = 4
        mock_run.return_value = completed(0, "{}")

        runner.apply(options)

        assert "-parallelism=4" in _args(mock_run, 0)

    @patch(RUN)
    def test_plan_only_refuses_apply(self, mock_run, runner, options):
        options.plan_only = True

        with pytest.raises(ConfigurationError, match="plan_only"):
            runner.apply(options)

        mock_run.assert_not_called()


class TestDestroy:
    @patch(RUN)
    def test_plan_only_is_noop(self, mock_run, runner, options):
        options.plan_only = True
        (options.terraform_dir / ".terraform").mkdir()

        assert runner.destroy(options) == ""
        mock_run.assert_not_called()

    @patch(RUN)
    def test_uninitialized_module_is_noop(self, mock_run, runner, options):
        assert runner.destroy(options) == ""
        mock_run.assert_not_called()

    @patch(RUN)
    def test_destroy_initialized_module(self, mock_run, runner, options, completed):
        (options.terraform_dir / ".terraform").mkdir()
        mock_run.return_value = completed(0, "Destroy complete!")

        assert "Destroy complete" in runner.destroy(options)
        cmd = _args(mock_run)
        assert cmd[:3] == ["terraform", "destroy", "-auto-approve"]
        assert any(a.startswith("-var-file=") for a in cmd)

    @patch(RUN)
    def test_destroy_honours_relative_data_dir(self, mock_run, runner, options, completed, monkeypatch):
        monkeypatch.delenv("TF_DATA_DIR", raising=False)
        options.env_vars["TF_DATA_DIR"] = ".tfdata"
        (options.terraform_dir / ".tfdata").mkdir()
        mock_run.return_value = completed(0, "Destroy complete!")

        assert "Destroy complete" in runner.destroy(options)
        assert mock_run.call_args.kwargs["env"]["TF_DATA_DIR"] == ".tfdata"

    @patch(RUN)
    def test_destroy_honours_absolute_data_dir(self, mock_run, runner, options, completed, tmp_path):
        data_dir = tmp_path / "shared-data"
        data_dir.mkdir()
        options.env_vars["TF_DATA_DIR"] = str(data_dir)
        mock_run.return_value = completed(0, "Destroy complete!")

        assert "Destroy complete" in runner.destroy(options)
        mock_run.assert_called_once()

    @patch(RUN)
    def test_data_dir_from_process_environment(self, mock_run, runner, options, completed, monkeypatch):
        monkeypatch.setenv("TF_DATA_DIR", ".tf-ci")
        (options.terraform_dir / ".tf-ci").mkdir()
        mock_run.return_value = completed(0, "Destroy complete!")

        assert "Destroy complete" in runner.destroy(options)

    @patch(RUN)
    def test_missing_data_dir_is_noop(self, mock_run, runner, options, monkeypatch):
        monkeypatch.delenv("TF_DATA_DIR", raising=False)
        options.env_vars["TF_DATA_DIR"] = ".tfdata"
        (options.terraform_dir / ".terraform").mkdir()

        assert runner.destroy(options) == ""
        mock_run.assert_not_called()


class TestOutputs:
    @patch(RUN)
    def test_output_string(self, mock_run, runner, options, completed):
        mock_run.return_value = completed(0, json.dumps({"vnet_name": {"value": "vnet-a"}}))

        assert runner.output(options, "vnet_name") == "vnet-a"

    @patch(RUN)
    def test_output_wrong_type(self, mock_run, runner, options, completed):
        mock_run.return_value = completed(0, json.dumps({"subnet_ids": {"value": ["a"]}}))

        with pytest.raises(ModuleAssertionError, match="is list, expected dict"):
            runner.output_map(options, "subnet_ids")

    @patch(RUN)
    def test_output_undeclared(self, mock_run, runner, options, completed):
        mock_run.return_value = completed(0, "{}")

        with pytest.raises(ModuleAssertionError, match="not declared"):
            runner.output(options, "vnet_name")

    @patch(RUN)
    def test_output_list(self, mock_run, runner, options, completed):
        mock_run.return_value = completed(0, json.dumps({"dns": {"value": ["8.8.8.8"]}}))

        assert runner.output_list(options, "dns") == ["8.8.8.8"]


class TestFailures:
    @patch(RUN)
    def test_timeout(self, mock_run, runner, options):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="terraform apply", timeout=10)

        with pytest.raises(TerraformTimeoutError) as exc_info:
            runner.init(options)

        assert exc_info.value.timeout_value > 0

    @patch(RUN)
    def test_missing_binary(self, mock_run, options):
        mock_run.side_effect = FileNotFoundError("terraform")

        with pytest.raises(ConfigurationError, match="binary not found"):
            TerraformRunner(binary="/nonexistent/terraform").init(options)

    @patch(RUN)
    def test_cancel_check_runs_before_attempt(self, mock_run, options):
        runner = TerraformRunner(cancel_check=MagicMock(side_effect=UnitCancelledError("stop")))

        with pytest.raises(UnitCancelledError):
            runner.init(options)

        mock_run.assert_not_called()


def test_binary_from_environment(monkeypatch):
    monkeypatch.setenv("AMT_TERRAFORM_BINARY", "/opt/tofu")

    assert TerraformRunner().binary == "/opt/tofu"


@patch(RUN)
def test_version(mock_run, completed):
    mock_run.return_value = completed(0, json.dumps({"terraform_version": "1.7.5"}))

    assert TerraformRunner().version() == "1.7.5"


def test_deferred_destroy_registers_on_context(options):
    ctx = MagicMock()

    deferred_destroy(ctx, options)

    ctx.defer.assert_called_once_with(
        ctx.terraform.destroy,
        options,
        description=f"terraform destroy {options.terraform_dir}",
    )
