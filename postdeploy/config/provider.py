"""Configuration provider following Black Box Design principles."""
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Protocol

DEFAULT_COMMAND_TIMEOUT = 60
DYNAMIC_SKU = "Dynamic"
ELASTIC_SCALE_ENABLED = "1"

AUTO_SWAP_LOCK_FILE = "autoswap.lock"
LOGIC_APP_JSON = "logicapp.json"
PENDING_OPERATION_MARKER = "SCMPendingOperation.txt"
PACKAGE_NAME_TXT = "packagename.txt"


def _is_true(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true")


def _parse_timeout(value: Optional[str]) -> int:
    """Parse a positive timeout in seconds, falling back to the default."""
    if value:
        try:
            timeout = int(value)
        except ValueError:
            return DEFAULT_COMMAND_TIMEOUT
        if timeout > 0:
            return timeout
    return DEFAULT_COMMAND_TIMEOUT


@dataclass(frozen=True)
class PostDeploymentConfig:
    """
    Every option recognized by postdeploy.

    Populated once at process start and passed down explicitly.
    """
    home: str
    temp_dir: str
    # Control-plane host, e.g. site.scm.azurewebsites.net
    http_host: Optional[str] = None
    # host:port, only used when http_host is localhost
    http_authority: Optional[str] = None
    # Enables auto-swap when set
    swap_slot_name: Optional[str] = None
    # Trigger sync only runs when the functions runtime is enabled ...
    functions_runtime_version: Optional[str] = None
    # ... and the site is on the consumption or an elastic plan
    website_sku: Optional[str] = None
    elastic_scale_enabled: Optional[str] = None
    # Non-empty only inside the managed hosting environment
    instance_id: Optional[str] = None
    home_stamp: Optional[str] = None
    auth_encryption_key: Optional[str] = None
    command_timeout: int = DEFAULT_COMMAND_TIMEOUT
    post_deployment_actions_dir: Optional[str] = None
    skip_ssl_validation: bool = False
    logic_app_url: Optional[str] = None
    site_packages_dir: Optional[str] = None
    log_level: str = "INFO"
    environ: Mapping[str, str] = field(default_factory=dict, repr=False, compare=False)

    @property
    def is_local_host(self) -> bool:
        return (self.http_host or "").lower() == "localhost"

    @property
    def is_managed_environment(self) -> bool:
        return bool(self.instance_id)

    @property
    def is_auto_swap_enabled(self) -> bool:
        return bool(self.swap_slot_name)

    @property
    def is_trigger_sync_enabled(self) -> bool:
        """Check if the site runs functions on a dynamically scaled plan."""
        if not self.functions_runtime_version:
            return False
        return (
            (self.website_sku or "").lower() == DYNAMIC_SKU.lower()
            or (self.elastic_scale_enabled or "").lower() == ELASTIC_SCALE_ENABLED
        )

    @property
    def functions_path(self) -> Path:
        return Path(self.home) / "site" / "wwwroot"

    @property
    def auto_swap_lock_path(self) -> Path:
        return Path(self.home) / "site" / "locks" / AUTO_SWAP_LOCK_FILE

    @property
    def logic_app_json_path(self) -> Path:
        return self.functions_path / LOGIC_APP_JSON

    @property
    def pending_operation_marker_path(self) -> Path:
        return Path(self.temp_dir) / PENDING_OPERATION_MARKER

    @property
    def post_deployment_scripts_dir(self) -> Path:
        """Script directory, SCM_POST_DEPLOYMENT_ACTIONS_PATH wins when set."""
        if self.post_deployment_actions_dir:
            return Path(self.post_deployment_actions_dir)
        return Path(self.home) / "site" / "deployments" / "tools" / "PostDeploymentActions"

    @property
    def package_name_path(self) -> Path:
        site_packages = self.site_packages_dir or str(Path(self.home) / "data" / "SitePackages")
        return Path(site_packages) / PACKAGE_NAME_TXT


class ConfigProvider(Protocol):
    """Protocol for configuration providers."""

    def load(self) -> PostDeploymentConfig:
        """Get post-deployment configuration."""
        ...


class EnvConfigProvider:
    """Environment-based configuration provider."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ if environ is not None else os.environ

    def load(self) -> PostDeploymentConfig:
        """Get post-deployment configuration from environment variables."""
        env = self._environ
        home = env.get("HOME") or str(Path.home())
        temp_dir = env.get("TEMP") or env.get("TMP") or tempfile.gettempdir()

        return PostDeploymentConfig(
            home=home,
            temp_dir=temp_dir,
            http_host=env.get("HTTP_HOST") or None,
            http_authority=env.get("HTTP_AUTHORITY") or None,
            swap_slot_name=env.get("WEBSITE_SWAP_SLOTNAME") or None,
            functions_runtime_version=env.get("FUNCTIONS_EXTENSION_VERSION") or None,
            website_sku=env.get("WEBSITE_SKU") or None,
            elastic_scale_enabled=env.get("WEBSITE_ELASTIC_SCALING_ENABLED") or None,
            instance_id=env.get("WEBSITE_INSTANCE_ID") or None,
            home_stamp=env.get("WEBSITE_HOME_STAMPNAME") or None,
            auth_encryption_key=env.get("WEBSITE_AUTH_ENCRYPTION_KEY") or None,
            command_timeout=_parse_timeout(env.get("SCM_COMMAND_IDLE_TIMEOUT")),
            post_deployment_actions_dir=env.get("SCM_POST_DEPLOYMENT_ACTIONS_PATH") or None,
            skip_ssl_validation=_is_true(env.get("SCM_SKIP_SSL_VALIDATION")),
            logic_app_url=env.get("LOGICAPP_URL") or None,
            site_packages_dir=env.get("SCM_SITE_PACKAGES_PATH") or None,
            log_level=env.get("LOG_LEVEL", "INFO"),
            environ=dict(env),
        )
