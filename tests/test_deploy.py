"""Tests for the Terraform deployment wrapper."""

import json
import subprocess
from unittest.mock import MagicMock, call, patch

import pytest

from frugal_jenkins import deploy
from frugal_jenkins.utils import DeployError


def completed(stdout="", returncode=0):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr="")


class TestProjectStructure:
    def test_complete_structure_passes(self, terraform_repo):
        deploy.validate_project_structure(terraform_repo, "dev")

    def test_missing_files_are_listed(self, terraform_repo):
        (terraform_repo / "environments" / "prod" / "backend.tf").unlink()
        (terraform_repo / "modules" / "ultra-frugal-jenkins" / "outputs.tf").unlink()

        with pytest.raises(DeployError) as excinfo:
            deploy.validate_project_structure(terraform_repo, "prod")

        message = str(excinfo.value)
        assert "environments/prod/backend.tf" in message
        assert "modules/ultra-frugal-jenkins/outputs.tf" in message

    def test_unknown_environment(self, terraform_repo):
        with pytest.raises(DeployError, match="staging"):
            deploy.validate_project_structure(terraform_repo, "staging")


class TestHelpers:
    def test_read_project_id(self, terraform_repo):
        tfvars = terraform_repo / "environments" / "dev" / "terraform.tfvars"
        assert deploy.read_project_id(tfvars) == "frugal-demo"

    def test_read_project_id_missing(self, tmp_path):
        tfvars = tmp_path / "terraform.tfvars"
        assert deploy.read_project_id(tfvars) is None
        tfvars.write_text('region = "us-central1"\n')
        assert deploy.read_project_id(tfvars) is None

    def test_cost_estimate(self):
        assert "$0.40-1.15" in deploy.cost_estimate("dev")
        assert "$0.85-2.00" in deploy.cost_estimate("prod")

    @patch("frugal_jenkins.deploy.run_command")
    def test_terraform_version_json(self, mock_run):
        mock_run.return_value = completed(json.dumps({"terraform_version": "1.7.5"}))
        assert deploy.terraform_version() == "1.7.5"

    @patch("frugal_jenkins.deploy.run_command")
    def test_terraform_version_text_fallback(self, mock_run):
        mock_run.side_effect = [
            completed("", returncode=1),
            completed("Terraform v0.12.31\n\nYour version is out of date"),
        ]
        assert deploy.terraform_version() == "0.12.31"

    @patch("frugal_jenkins.deploy.run_command")
    def test_read_outputs(self, mock_run, tmp_path):
        mock_run.return_value = completed(json.dumps({
            "jenkins_url": {"value": "https://jenkins.example", "type": "string"},
            "authorized_users": {"value": ["a@example.com"], "type": ["list", "string"]},
        }))
        assert deploy.read_outputs(tmp_path) == {
            "jenkins_url": "https://jenkins.example",
            "authorized_users": ["a@example.com"],
        }

    @patch("frugal_jenkins.deploy.run_command", return_value=completed("", returncode=1))
    def test_read_outputs_unavailable(self, mock_run, tmp_path):
        assert deploy.read_outputs(tmp_path) == {}


class TestValidatePrerequisites:
    @patch("frugal_jenkins.deploy.command_exists", return_value=False)
    def test_collects_all_errors(self, mock_exists, terraform_repo):
        (terraform_repo / "environments" / "dev" / "terraform.tfvars").unlink()

        with pytest.raises(DeployError) as excinfo:
            deploy.validate_prerequisites(terraform_repo, "dev")

        message = str(excinfo.value)
        assert "gcloud" in message
        assert "Terraform is not installed" in message
        assert "terraform.tfvars" in message

    @patch("frugal_jenkins.deploy.terraform_version", return_value="0.14.0")
    @patch("frugal_jenkins.deploy.active_gcloud_account", return_value="ops@example.com")
    @patch("frugal_jenkins.deploy.command_exists", return_value=True)
    def test_old_terraform_rejected(self, mock_exists, mock_account, mock_version, terraform_repo):
        with pytest.raises(DeployError, match="Terraform 1.0 or later"):
            deploy.validate_prerequisites(terraform_repo, "dev")

    @patch("frugal_jenkins.deploy.terraform_version", return_value="1.7.5")
    @patch("frugal_jenkins.deploy.active_gcloud_account", return_value=None)
    @patch("frugal_jenkins.deploy.command_exists", return_value=True)
    def test_unauthenticated_gcloud_rejected(self, mock_exists, mock_account, mock_version, terraform_repo):
        with pytest.raises(DeployError, match="gcloud auth login"):
            deploy.validate_prerequisites(terraform_repo, "dev")

    @patch("frugal_jenkins.deploy.terraform_version", return_value="1.7.5")
    @patch("frugal_jenkins.deploy.active_gcloud_account", return_value="ops@example.com")
    @patch("frugal_jenkins.deploy.command_exists", return_value=True)
    def test_all_good(self, mock_exists, mock_account, mock_version, terraform_repo):
        deploy.validate_prerequisites(terraform_repo, "dev")


@patch("frugal_jenkins.deploy.read_outputs", return_value={"jenkins_url": "https://jenkins.example"})
@patch("frugal_jenkins.deploy.validate_project_access", return_value=True)
@patch("frugal_jenkins.deploy.run_terraform")
class TestDeploy:
    def test_apply_flow(self, mock_tf, mock_access, mock_outputs, terraform_repo):
        assert deploy.deploy("dev", root=terraform_repo, skip_validation=True, force=True)

        env_dir = terraform_repo / "environments" / "dev"
        assert mock_tf.call_args_list == [
            call("init", env_dir),
            call("plan", env_dir, "-out=tfplan"),
            call("apply", env_dir, "tfplan"),
        ]
        mock_access.assert_called_once_with("frugal-demo")

    def test_destroy_flow(self, mock_tf, mock_access, mock_outputs, terraform_repo):
        assert deploy.deploy("prod", root=terraform_repo, skip_validation=True, force=True, destroy=True)

        env_dir = terraform_repo / "environments" / "prod"
        assert mock_tf.call_args_list == [
            call("init", env_dir),
            call("destroy", env_dir, "-auto-approve"),
        ]

    def test_declined_confirmation_cancels(self, mock_tf, mock_access, mock_outputs, terraform_repo):
        confirm = MagicMock(return_value=False)

        assert not deploy.deploy("dev", root=terraform_repo, skip_validation=True, destroy=True, confirm=confirm)
        confirm.assert_called_once()
        assert confirm.call_args.args[1] is False
        mock_tf.assert_not_called()

    def test_without_confirm_callback_nothing_runs(self, mock_tf, mock_access, mock_outputs, terraform_repo):
        assert not deploy.deploy("dev", root=terraform_repo, skip_validation=True)
        mock_tf.assert_not_called()

    def test_inaccessible_project(self, mock_tf, mock_access, mock_outputs, terraform_repo):
        mock_access.return_value = False

        with pytest.raises(DeployError, match="frugal-demo"):
            deploy.deploy("dev", root=terraform_repo, skip_validation=True, force=True)
        mock_tf.assert_not_called()

    def test_outside_repository_root(self, mock_tf, mock_access, mock_outputs, tmp_path):
        with pytest.raises(DeployError, match="repository root"):
            deploy.deploy("dev", root=tmp_path, force=True)


@patch("frugal_jenkins.deploy.subprocess.run", side_effect=subprocess.CalledProcessError(1, ["terraform"]))
def test_run_terraform_failure(mock_run, tmp_path):
    with pytest.raises(DeployError, match="Terraform plan failed"):
        deploy.run_terraform("plan", tmp_path, "-out=tfplan")
