"""Terraform deployment wrapper for the ultra-frugal Jenkins environments."""

import json
import re
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .utils import command_exists, run_command, CommandError, DeployError

MODULE_PATH = Path("modules") / "ultra-frugal-jenkins"
ENVIRONMENTS = ("dev", "prod")
MODULE_FILES = ("main.tf", "variables.tf", "outputs.tf", "versions.tf")
ENVIRONMENT_FILES = ("main.tf", "variables.tf", "outputs.tf", "versions.tf", "backend.tf")

COST_ESTIMATES = {
    "dev": """Environment: DEVELOPMENT

┌─────────────────────────────┬─────────────┬─────────────────────────────────┐
│ Component                   │ Monthly USD │ Notes                           │
├─────────────────────────────┼─────────────┼─────────────────────────────────┤
│ Cloud Run Controller        │ $0.00-0.20  │ Scales to zero when idle        │
│ Spot VM Agents (1-2 x e2)   │ $0.15-0.40  │ 91% discount, minimal usage     │
│ Cloud Storage (10GB)        │ $0.05-0.15  │ Jenkins data + artifacts        │
│ Load Balancer (IAP)         │ $0.15-0.25  │ HTTPS + Identity-Aware Proxy    │
│ Networking (VPC, etc.)      │ $0.05-0.15  │ Private networking              │
├─────────────────────────────┼─────────────┼─────────────────────────────────┤
│ TOTAL ESTIMATED             │ $0.40-1.15  │ Well under $2 budget!           │
└─────────────────────────────┴─────────────┴─────────────────────────────────┘""",
    "prod": """Environment: PRODUCTION

┌─────────────────────────────┬─────────────┬─────────────────────────────────┐
│ Component                   │ Monthly USD │ Notes                           │
├─────────────────────────────┼─────────────┼─────────────────────────────────┤
│ Cloud Run Controller        │ $0.10-0.30  │ Higher traffic expected         │
│ Spot VM Agents (2-4 x e2)   │ $0.30-0.80  │ 91% discount, auto-scaling      │
│ Cloud Storage (25GB)        │ $0.10-0.25  │ More builds & artifacts         │
│ Load Balancer (IAP)         │ $0.20-0.30  │ HTTPS + Identity-Aware Proxy    │
│ Networking (VPC, etc.)      │ $0.10-0.20  │ Private networking              │
│ Monitoring & Logging        │ $0.05-0.15  │ Enhanced production monitoring  │
├─────────────────────────────┼─────────────┼─────────────────────────────────┤
│ TOTAL ESTIMATED             │ $0.85-2.00  │ At upper limit of budget        │
└─────────────────────────────┴─────────────┴─────────────────────────────────┘""",
}


def environment_path(root: Path, environment: str) -> Path:
    """Return the Terraform root for an environment."""
    if environment not in ENVIRONMENTS:
        raise DeployError(
            f"Unknown environment '{environment}' (expected one of: {', '.join(ENVIRONMENTS)})"
        )
    return Path(root) / "environments" / environment


def validate_project_structure(root: Path, environment: str) -> None:
    """
    Check that the module and environment Terraform files are present.

    Args:
        root: Repository root
        environment: Environment name (dev or prod)

    Raises:
        DeployError: Listing every missing path
    """
    root = Path(root)
    env_dir = environment_path(root, environment)
    module_dir = root / MODULE_PATH

    required = [module_dir] + [module_dir / name for name in MODULE_FILES]
    required += [env_dir] + [env_dir / name for name in ENVIRONMENT_FILES]

    missing = [path for path in required if not path.exists()]
    if missing:
        listing = "\n".join(f"  ✗ {path.relative_to(root)}" for path in missing)
        raise DeployError(f"Project structure validation failed. Missing required files:\n{listing}")

    print("✅ Project structure validation passed")


def active_gcloud_account() -> Optional[str]:
    """Return the active gcloud account, or None if nobody is logged in."""
    result = run_command(
        ["gcloud", "auth", "list", "--filter=status:ACTIVE", "--format=value(account)"]
    )
    account = result.stdout.strip()
    return account or None


def terraform_version() -> Optional[str]:
    """Return the installed Terraform version (e.g. "1.7.5"), or None."""
    result = run_command(["terraform", "version", "-json"], check=False)
    if result.returncode == 0:
        try:
            version = json.loads(result.stdout).get("terraform_version")
            if version:
                return version
        except ValueError:
            pass

    # Older releases have no -json flag
    result = run_command(["terraform", "version"], check=False)
    first_line = result.stdout.splitlines()[0] if result.stdout else ""
    match = re.search(r"v?([0-9]+\.[0-9]+\.[0-9]+(?:-[a-zA-Z0-9]+)*)", first_line)
    return match.group(1) if match else None


def validate_prerequisites(root: Path, environment: str) -> None:
    """
    Validate tooling, authentication, and configuration before deploying.

    All problems are collected and reported together.

    Raises:
        DeployError: If any prerequisite is not met
    """
    print("🔍 Validating prerequisites...")
    errors: List[str] = []

    if not command_exists("gcloud"):
        errors.append("Google Cloud SDK (gcloud) is not installed or not in PATH")
    else:
        try:
            account = active_gcloud_account()
        except CommandError:
            errors.append("Unable to check Google Cloud authentication status")
        else:
            if account is None:
                errors.append("No active Google Cloud authentication found. Run 'gcloud auth login'")
            else:
                print(f"✅ Authenticated as: {account}")

    if not command_exists("terraform"):
        errors.append("Terraform is not installed or not in PATH")
    else:
        version = terraform_version()
        if version is None:
            errors.append("Unable to determine Terraform version")
        else:
            print(f"✅ Terraform version: {version}")
            if int(version.split(".")[0]) < 1:
                errors.append(f"Terraform 1.0 or later is required. Current version: {version}")

    try:
        validate_project_structure(root, environment)
    except DeployError as e:
        errors.append(str(e))

    tfvars = environment_path(root, environment) / "terraform.tfvars"
    if not tfvars.is_file():
        errors.append(f"Configuration file not found: {tfvars}")
        errors.append(f"Copy from {tfvars}.example and customize.")

    if errors:
        raise DeployError("Prerequisite check failed:\n" + "\n".join(f"  - {e}" for e in errors))

    print("✅ All prerequisites validated!")


def read_project_id(tfvars: Path) -> Optional[str]:
    """Return the quoted value of the ``project_id`` assignment in a tfvars file."""
    tfvars = Path(tfvars)
    if not tfvars.is_file():
        return None
    for line in tfvars.read_text().splitlines():
        match = re.match(r'^project_id\s*=\s*"([^"]*)"', line)
        if match:
            return match.group(1)
    return None


def validate_project_access(project_id: str) -> bool:
    """Return True if the current gcloud account can describe the project."""
    result = run_command(
        ["gcloud", "projects", "describe", project_id, "--format=value(projectId)"],
        check=False,
    )
    return result.returncode == 0


def cost_estimate(environment: str) -> str:
    """Return the monthly cost table for an environment."""
    return COST_ESTIMATES.get(environment, COST_ESTIMATES["dev"])


def run_terraform(operation: str, working_dir: Path, *args: str) -> None:
    """
    Run a Terraform command in an environment directory, streaming its output.

    Raises:
        DeployError: If Terraform is missing or exits non-zero
    """
    cmd = ["terraform", operation, *args]
    print(f"▶ Running: {' '.join(cmd)} (in {working_dir})")
    try:
        subprocess.run(cmd, cwd=str(working_dir), check=True)
    except FileNotFoundError as e:
        raise DeployError("Terraform is not installed or not in PATH") from e
    except subprocess.CalledProcessError as e:
        raise DeployError(f"Terraform {operation} failed (exit code {e.returncode})") from e


def read_outputs(working_dir: Path) -> Dict[str, object]:
    """
    Return Terraform outputs as ``{name: value}``.

    Returns an empty dict when no outputs are available.
    """
    try:
        result = run_command(["terraform", "output", "-json"], cwd=str(working_dir), check=False)
    except CommandError:
        return {}
    if result.returncode != 0 or not result.stdout.strip():
        return {}
    try:
        raw = json.loads(result.stdout)
    except ValueError:
        return {}
    return {name: entry.get("value") for name, entry in raw.items() if isinstance(entry, dict)}


def show_deployment_results(environment: str, outputs: Dict[str, object]) -> None:
    """Print the key deployment outputs and next steps."""
    if not outputs:
        print("⚠️  No terraform outputs found. Check later with: terraform output")
        return

    print(f"🎉 Your Ultra-Frugal Jenkins environment is ready! ({environment.upper()})")
    for key, label in (("jenkins_url", "Jenkins URL"), ("project_id", "Project ID"), ("region", "Region")):
        if outputs.get(key):
            print(f"   {label}: {outputs[key]}")
    users = outputs.get("authorized_users")
    if users:
        print(f"   Authorized Users: {', '.join(users) if isinstance(users, list) else users}")

    print("\n📋 Next Steps:")
    print("1. Open the Jenkins URL above and sign in with an authorized Google account")
    print("2. First startup may take 2-3 minutes (Cloud Run cold start)")
    print("3. Unlock Jenkins with: fj password")
    print("4. Set up budget alerts: https://console.cloud.google.com/billing/budgets")


def deploy(
    environment: str = "dev",
    root: Optional[Path] = None,
    skip_validation: bool = False,
    force: bool = False,
    destroy: bool = False,
    confirm: Optional[Callable[[str, bool], bool]] = None,
) -> bool:
    """
    Deploy (or destroy) an environment with Terraform.

    Args:
        environment: dev or prod
        root: Repository root (defaults to the current directory)
        skip_validation: Only validate the project structure
        force: Do not ask for confirmation
        destroy: Destroy the environment instead of applying it
        confirm: ``confirm(prompt, default) -> bool`` used unless ``force``;
                 without it, an unforced run is cancelled

    Returns:
        True if Terraform ran, False if the operator cancelled

    Raises:
        DeployError: If validation or Terraform fails
    """
    root = Path(root or Path.cwd())
    env_dir = environment_path(root, environment)

    if not (root / MODULE_PATH).is_dir():
        raise DeployError(
            f"This command must be run from the repository root (no {MODULE_PATH} in {root})"
        )

    print(f"🚀 Ultra-Frugal Jenkins Deployment ({environment.upper()})")

    if skip_validation:
        print("⚠️  Skipping prerequisite validation as requested")
        validate_project_structure(root, environment)
    else:
        validate_prerequisites(root, environment)

    project_id = read_project_id(env_dir / "terraform.tfvars")
    if project_id:
        print(f"Found project ID in configuration: {project_id}")
        if not validate_project_access(project_id):
            raise DeployError(
                f"Cannot access project {project_id}. "
                "Need roles/editor or roles/owner and a linked billing account."
            )
        print(f"✅ Project access validated: {project_id}")
    else:
        print('⚠️  Could not find project_id in terraform.tfvars (expected: project_id = "...")')

    print()
    print(cost_estimate(environment))
    print()

    if not force:
        if destroy:
            prompt = f"This will DESTROY all resources in the {environment} environment. Continue?"
            default = False
        else:
            prompt = "Do you want to continue with the deployment?"
            default = True
        if confirm is None or not confirm(prompt, default):
            print("Cancelled by user.")
            return False

    run_terraform("init", env_dir)
    print("✅ Terraform initialized successfully")

    if destroy:
        run_terraform("destroy", env_dir, "-auto-approve")
        print(f"✅ Environment {environment} has been cleaned up!")
        return True

    run_terraform("plan", env_dir, "-out=tfplan")
    print("✅ Terraform plan completed")
    run_terraform("apply", env_dir, "tfplan")
    print("✅ Terraform apply completed")

    show_deployment_results(environment, read_outputs(env_dir))
    return True
