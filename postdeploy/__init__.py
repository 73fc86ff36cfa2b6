"""
postdeploy - Post-Deployment Orchestration Helper

Runs once after site content has been deployed: executes operator supplied
post-deployment scripts, notifies the control plane of state changes and
leaves liveness markers behind for long running operations.

Architecture:
- Each module is self-contained with clear interfaces
- Modules are completely replaceable
- No module knows the internals of another
- All communication through defined interfaces

Modules:
- resolver: Hostname resolution with home-stamp fallback
- retry: Fixed interval retry of async actions
- scripts: Post-deployment script discovery and execution
- control_plane: Signed HTTP requests to the control plane
- marker: File based auto-swap lock and pending operation heartbeat
- triggers: Function trigger payload construction
- orchestrator: Sequencing of the operations above
"""

__version__ = "1.0.0"
