"""Access control for the Jenkins endpoint: IP allowlist firewall rules or IAP."""

import ipaddress
import re
from pathlib import Path
from string import Template
from typing import Callable, List, Optional

import requests

from .config import get_config
from .deploy import environment_path, read_outputs, run_terraform
from .utils import http_status, SecurityError

IP_SERVICES = ("https://ipinfo.io/ip", "https://api.ipify.org")
ALLOWLIST_FILE = "ip-allowlist.tf"
FIREWALL_TARGETS = (
    "-target=google_compute_firewall.jenkins_ip_allowlist",
    "-target=google_compute_firewall.jenkins_block_others",
)
IAP_PLAN = "iap-plan"


def detect_public_ip(services=IP_SERVICES, timeout: int = 5) -> str:
    """
    Return this machine's public IP address as seen by an echo service.

    Services are tried in order; the first valid address wins.

    Raises:
        SecurityError: If no service returned a valid address
    """
    for url in services:
        try:
            response = requests.get(url, timeout=timeout)
        except requests.exceptions.RequestException:
            continue
        if response.status_code != 200:
            continue
        candidate = response.text.strip()
        try:
            return str(ipaddress.ip_address(candidate))
        except ValueError:
            continue

    raise SecurityError("Could not detect your public IP address")


def normalize_cidrs(current_ip: Optional[str], additional: str = "") -> List[str]:
    """
    Build the allowlist from the detected IP and comma-separated extras.

    Bare addresses become single-host ranges (/32, /128 for IPv6); ranges
    that already carry a prefix are kept. Duplicates are dropped.

    Raises:
        SecurityError: If an entry is not an IP address or network
    """
    entries = [current_ip] if current_ip else []
    entries += [part.strip() for part in additional.split(",") if part.strip()]

    cidrs: List[str] = []
    for entry in entries:
        try:
            network = ipaddress.ip_network(entry, strict=False)
        except ValueError as e:
            raise SecurityError(f"Invalid IP address or range: {entry}") from e
        if str(network) not in cidrs:
            cidrs.append(str(network))

    if not cidrs:
        raise SecurityError("The IP allowlist is empty")
    return cidrs


def render_ip_allowlist(cidrs: List[str]) -> str:
    """Render the allow/deny firewall rules for the given source ranges."""
    with open(get_config().get_template_path(ALLOWLIST_FILE)) as f:
        template = Template(f.read())

    return template.substitute(source_ranges=", ".join(f'"{cidr}"' for cidr in cidrs))


def apply_ip_allowlist(
    root: Path,
    environment: str,
    cidrs: List[str],
    confirm: Optional[Callable[[str, bool], bool]] = None,
    force: bool = False,
) -> bool:
    """
    Write ``ip-allowlist.tf`` into the environment and apply only its rules.

    The configuration is always written; plan and apply run only after
    confirmation (or with ``force``).

    Returns:
        True if the firewall rules were applied
    """
    env_dir = environment_path(root, environment)
    if not env_dir.is_dir():
        raise SecurityError(f"Environment path does not exist: {env_dir}")

    allowlist = env_dir / ALLOWLIST_FILE
    allowlist.write_text(render_ip_allowlist(cidrs))
    print(f"📝 Wrote IP allowlist configuration to {allowlist}")
    print("🔐 Will restrict HTTPS access to:")
    for cidr in cidrs:
        print(f"   - {cidr}")

    if not force and (confirm is None or not confirm("Apply IP-based security now?", False)):
        print("Configuration saved but not applied. To apply later, run: terraform apply")
        return False

    run_terraform("plan", env_dir, *FIREWALL_TARGETS)

    if not force and not confirm("Proceed with applying firewall rules?", False):
        print("Cancelled by user.")
        return False

    run_terraform("apply", env_dir, *FIREWALL_TARGETS, "-auto-approve")
    print("🎉 IP-based security applied; all other IPs are blocked")
    print("⚠️  Update the allowlist when your IP changes")

    jenkins_url = read_outputs(env_dir).get("jenkins_url")
    if jenkins_url:
        print(f"🎯 Access your IP-protected Jenkins: {jenkins_url}")
    return True


def read_authorized_users(tfvars: Path) -> List[str]:
    """Return the e-mail addresses listed in the ``authorized_users`` block."""
    tfvars = Path(tfvars)
    if not tfvars.is_file():
        return []

    lines = tfvars.read_text().splitlines()
    for index, line in enumerate(lines):
        if "authorized_users" in line:
            block = "\n".join(lines[index:index + 6])
            return re.findall(r'"([^"\s]+@[^"\s]+)"', block)
    return []


def enable_iap(
    root: Path,
    environment: str = "dev",
    confirm: Optional[Callable[[str, bool], bool]] = None,
    force: bool = False,
    check: bool = True,
) -> Optional[str]:
    """
    Validate, plan, and apply the environment with Identity-Aware Proxy enabled.

    Args:
        root: Repository root
        environment: dev or prod
        confirm: ``confirm(prompt, default) -> bool`` used unless ``force``
        force: Apply without asking
        check: Request the Jenkins URL afterwards and report the status

    Returns:
        The Jenkins URL, or None if the operator cancelled

    Raises:
        DeployError: If Terraform fails
        SecurityError: If the deployment has no ``jenkins_url`` output
    """
    env_dir = environment_path(root, environment)

    print("📋 Step 1: Checking current Terraform configuration...")
    run_terraform("validate", env_dir)
    print("✅ Terraform configuration is valid")

    print("📋 Step 2: Planning IAP deployment...")
    run_terraform("plan", env_dir, f"-out={IAP_PLAN}")

    print("📋 Step 3: Applying IAP configuration...")
    print("⚠️  This will enable IAP authentication. Jenkins will require Google Sign-In.")
    if not force and (confirm is None or not confirm("Continue?", False)):
        print("Cancelled by user.")
        return None
    run_terraform("apply", env_dir, IAP_PLAN)

    print("📋 Step 4: Verifying IAP deployment...")
    jenkins_url = read_outputs(env_dir).get("jenkins_url")
    if not jenkins_url:
        raise SecurityError("Could not get Jenkins URL from terraform output")

    print(f"🎉 IAP Authentication Enabled: {jenkins_url}")
    users = read_authorized_users(env_dir / "terraform.tfvars")
    if users:
        print("🔐 Sign in with an authorized Google account:")
        for user in users:
            print(f"   - {user}")

    if check:
        status = http_status(jenkins_url)
        if status in (200, 302):
            print("✅ Jenkins is responding correctly")
        else:
            print(f"⚠️  Jenkins response: HTTP {status or '000'} - this might be normal during startup")

    return jenkins_url
