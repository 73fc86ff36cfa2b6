"""
Function trigger payload construction.

Collects the trigger bindings of every function under the functions root
so the control plane can scale the site on them. A bad function.json
fails the whole deployment instead of being skipped silently.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from postdeploy.errors import MalformedTriggerError

logger = logging.getLogger("postdeploy.triggers")

FUNCTIONS_HOST_CONFIG_FILE = "host.json"
FUNCTIONS_CONFIG_FILE = "function.json"
PROXY_CONFIG_FILE = "proxies.json"

DURABLE_TASK = "durableTask"
HUB_NAME = "HubName"
DURABLE_TASK_STORAGE_CONNECTION_NAME = "azureStorageConnectionStringName"
# Field added to durable triggers in the payload
DURABLE_TASK_STORAGE_CONNECTION = "connection"
TASK_HUB_NAME = "taskHubName"

DURABLE_TRIGGER_TYPES = ("orchestrationtrigger", "activitytrigger")
ROUTING_TRIGGER = {"type": "routingTrigger"}


def _get_ignore_case(data: Mapping[str, Any], key: str) -> Any:
    """Case-insensitive lookup, exact match first. Hand edited files vary in casing."""
    if key in data:
        return data[key]
    lowered = key.lower()
    for name, value in data.items():
        if name.lower() == lowered:
            return value
    return None


def _load_json_object(path: Path) -> Dict[str, Any]:
    # utf-8-sig tolerates the BOM some editors write
    data = json.loads(path.read_text(encoding="utf-8-sig"))
    if not isinstance(data, dict):
        raise MalformedTriggerError(str(path), "expected a JSON object")
    return data


def read_durable_config(host_json: Union[str, Path]) -> Dict[str, str]:
    """
    Read the durable task hub settings from host.json.

    Returns:
        Dictionary with HubName and/or connection keys, empty if absent
    """
    path = Path(host_json)
    config: Dict[str, str] = {}
    data = _load_json_object(path)

    durable_task = _get_ignore_case(data, DURABLE_TASK)
    if durable_task is None:
        return config
    if not isinstance(durable_task, dict):
        raise MalformedTriggerError(str(path), f"{DURABLE_TASK} must be an object")

    hub_name = _get_ignore_case(durable_task, HUB_NAME)
    if hub_name is not None:
        config[HUB_NAME] = str(hub_name)

    connection = _get_ignore_case(durable_task, DURABLE_TASK_STORAGE_CONNECTION_NAME)
    if connection is not None:
        config[DURABLE_TASK_STORAGE_CONNECTION] = str(connection)

    return config


def _is_disabled(value: Any, environ: Mapping[str, str]) -> bool:
    """
    Interpret the "disabled" property of a function.

    Anything that is not a boolean names an environment variable whose
    value "1" or "true" disables the function.
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    text = str(value)
    if text.lower() in ("true", "false"):
        return text.lower() == "true"
    expanded = environ.get(text)
    return (expanded or "").lower() in ("1", "true")


def _is_excluded(value: Any, path: Path) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise MalformedTriggerError(str(path), "excluded must be a boolean")


def read_function_triggers(
    function_json: Union[str, Path],
    environ: Mapping[str, str],
    tracer: Optional[logging.Logger] = None,
) -> List[Dict[str, Any]]:
    """
    Read the trigger bindings of one function.

    Args:
        function_json: Path to <functions root>/<function name>/function.json
        environ: Environment used to expand a non-boolean "disabled" value
        tracer: Logger for skip decisions and failures

    Returns:
        Trigger bindings tagged with functionName; empty when the function
        is disabled or excluded

    Raises:
        MalformedTriggerError, ValueError, OSError: the file is invalid
    """
    tracer = tracer or logger
    path = Path(function_json)
    function_name = path.parent.name

    try:
        data = _load_json_object(path)

        if "disabled" in data and _is_disabled(data["disabled"], environ):
            tracer.debug("Function %s is disabled", function_name)
            return []

        if "excluded" in data and _is_excluded(data["excluded"], path):
            tracer.debug("Function %s is excluded", function_name)
            return []

        bindings = data.get("bindings")
        if not isinstance(bindings, list):
            raise MalformedTriggerError(str(path), "bindings must be an array")

        triggers = []
        for binding in bindings:
            if not isinstance(binding, dict) or not isinstance(binding.get("type"), str):
                raise MalformedTriggerError(str(path), "every binding needs a string type")

            binding_type = binding["type"]
            if binding_type.lower().endswith("trigger"):
                trigger = dict(binding)
                trigger["functionName"] = function_name
                tracer.debug("Syncing %s of %s", binding_type, function_name)
                triggers.append(trigger)
            else:
                tracer.debug("Skipping %s of %s", binding_type, function_name)

        return triggers

    except Exception as e:
        tracer.warning("%s is invalid. %s", path, e)
        raise


def enrich_durable_triggers(
    triggers: List[Dict[str, Any]],
    durable_config: Mapping[str, str],
) -> List[Dict[str, Any]]:
    """Add hub name and storage connection to orchestration and activity triggers."""
    if not durable_config:
        return triggers

    for trigger in triggers:
        trigger_type = trigger.get("type")
        if not isinstance(trigger_type, str) or trigger_type.lower() not in DURABLE_TRIGGER_TYPES:
            continue
        if HUB_NAME in durable_config:
            trigger[TASK_HUB_NAME] = durable_config[HUB_NAME]
        if DURABLE_TASK_STORAGE_CONNECTION in durable_config:
            trigger[DURABLE_TASK_STORAGE_CONNECTION] = durable_config[DURABLE_TASK_STORAGE_CONNECTION]

    return triggers


def build_trigger_payload(
    functions_path: Union[str, Path],
    environ: Mapping[str, str],
    tracer: Optional[logging.Logger] = None,
) -> List[Dict[str, Any]]:
    """
    Build the trigger list for every function under functions_path.

    A routing trigger is appended when proxies.json exists. Durable
    triggers are enriched from host.json when it declares a task hub.

    Raises:
        FileNotFoundError: functions_path is not a directory
    """
    tracer = tracer or logger
    root = Path(functions_path)

    if not root.is_dir():
        tracer.warning("Functions root %s does not exist", root)
        raise FileNotFoundError(f"Functions root {root} does not exist")

    durable_config: Dict[str, str] = {}
    host_json = root / FUNCTIONS_HOST_CONFIG_FILE
    if host_json.is_file():
        durable_config = read_durable_config(host_json)

    triggers: List[Dict[str, Any]] = []
    for directory in sorted(p for p in root.iterdir() if p.is_dir()):
        function_json = directory / FUNCTIONS_CONFIG_FILE
        if function_json.is_file():
            triggers.extend(read_function_triggers(function_json, environ, tracer))

    if (root / PROXY_CONFIG_FILE).is_file():
        triggers.append(dict(ROUTING_TRIGGER))

    return enrich_durable_triggers(triggers, durable_config)
