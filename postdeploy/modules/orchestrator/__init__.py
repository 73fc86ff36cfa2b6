"""
Orchestrator Module - Black Box Interface

Purpose: Sequence the post-deployment operations
Interface: PostDeploymentOrchestrator.run(), sync_function_triggers(),
           sync_logic_app_json(), perform_auto_swap(), is_auto_swap_enabled(),
           is_auto_swap_ongoing(), restart_main_site(), remove_all_workers(),
           update_website_run_from_package(), perform_function_host_sync_triggers(),
           update_package_name(), track_pending_operation(),
           run_post_deployment_scripts()
Hidden: Step ordering, skip conditions, request paths

Script and transport failures propagate to the caller unchanged.
"""

from .orchestrator import RESTART_API_PATH, SET_TRIGGERS_PATH, PostDeploymentOrchestrator

__all__ = ["RESTART_API_PATH", "SET_TRIGGERS_PATH", "PostDeploymentOrchestrator"]
