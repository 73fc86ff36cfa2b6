"""
postdeploy Modules

- resolver: hostname lookup with home-stamp address fallback
- retry: fixed count, fixed interval retries for restart requests
- scripts: discovery and timed execution of post-deployment scripts
- control_plane: signed requests to the hosting control plane
- marker: auto-swap lock and pending-operation heartbeat files
- triggers: function trigger payload built from function.json files
- orchestrator: sequences the above for a deployment event

Each package re-exports its public names; callers import from the package,
never from its implementation module. Operations take their tracer (a
logging.Logger) as an argument.
"""
