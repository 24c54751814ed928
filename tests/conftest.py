import os

import pytest

from frugal_jenkins import config


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Isolate every test from FJ_* variables and the cached config."""
    for key in list(os.environ):
        if key.startswith("FJ_"):
            monkeypatch.delenv(key, raising=False)
    config.reset_config()
    yield
    config.reset_config()


@pytest.fixture
def terraform_repo(tmp_path):
    """A repository root with the module and both environments laid out."""
    module_dir = tmp_path / "modules" / "ultra-frugal-jenkins"
    module_dir.mkdir(parents=True)
    for name in ("main.tf", "variables.tf", "outputs.tf", "versions.tf"):
        (module_dir / name).write_text("")

    for env in ("dev", "prod"):
        env_dir = tmp_path / "environments" / env
        env_dir.mkdir(parents=True)
        for name in ("main.tf", "variables.tf", "outputs.tf", "versions.tf", "backend.tf"):
            (env_dir / name).write_text("")
        (env_dir / "terraform.tfvars").write_text(
            'project_id = "frugal-demo"\nregion     = "us-central1"\n'
        )

    return tmp_path
