"""
Tool execution against one project directory
"""

import logging
import shlex
from typing import Any, Callable, Dict, List, Optional

import httpx
from jsonschema import Draft7Validator

from ..compilation.tool_yaml_loader import load_yaml_tools
from ..error_handling.error_handler import ErrorHandler
from ..error_handling.errors import InvalidArgumentsError, UnknownToolError
from ..provider_ir import ToolDefinition, ToolInvocation, ToolOutcome
from ..settings import ToolSettings
from ..tools.deploy import Deployer
from ..tools.env_file import ProjectEnvFile, set_env_variable
from ..tools.shell import BackgroundProcessTable, ShellRunner
from ..tools.system_info import collect_system_info
from ..tools.web_search import web_search
from ..tools.workspace import ProjectWorkspace


logger = logging.getLogger(__name__)

INSTALL_COMMANDS = {
    "npm": "npm install",
    "pip": "pip install",
    "pip3": "pip3 install",
    "cargo": "cargo add",
    "go": "go get",
    "apt": "sudo apt-get install -y",
    "brew": "brew install",
}

GIT_OPERATIONS = ("init", "status", "add", "commit", "push", "pull", "clone", "branch", "checkout", "log", "diff")


class ToolExecutor:
    """Dispatches tool invocations for one project and never raises across `execute`.

    The background-process table and the environment overlay belong to this
    instance; nothing is shared with other executors.
    """

    def __init__(
        self,
        project_dir: str,
        env_overlay: Optional[Dict[str, str]] = None,
        *,
        tools: Optional[List[ToolDefinition]] = None,
        settings: Optional[ToolSettings] = None,
        error_handler: Optional[ErrorHandler] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.settings = settings or ToolSettings()
        self.workspace = ProjectWorkspace(project_dir, list_limit=self.settings.list_limit)
        self.env_overlay: Dict[str, str] = env_overlay if env_overlay is not None else {}
        self.runner = ShellRunner(
            self.workspace.root,
            self.env_overlay,
            default_timeout_ms=self.settings.shell_timeout_ms,
            max_output_bytes=self.settings.max_output_bytes,
            max_background=self.settings.max_background_processes,
        )
        self.env_file = ProjectEnvFile(self.workspace.root)
        self.deployer = Deployer(self.runner, self.workspace, self.settings.deploy_build_timeout_ms)
        self.error_handler = error_handler or ErrorHandler()
        self.http_client = http_client

        catalog = tools if tools is not None else load_yaml_tools().tools
        self.definitions: Dict[str, ToolDefinition] = {tool.name: tool for tool in catalog}
        self._validators = {name: Draft7Validator(tool.parameters) for name, tool in self.definitions.items()}
        self._handlers: Dict[str, Callable[[Dict[str, Any]], str]] = {
            "read_file": self._read_file,
            "write_file": self._write_file,
            "list_directory": self._list_directory,
            "create_directory": self._create_directory,
            "delete_file": self._delete_file,
            "move_file": self._move_file,
            "execute_shell": self._execute_shell,
            "web_search": self._web_search,
            "get_system_info": self._get_system_info,
            "install_package": self._install_package,
            "git_operation": self._git_operation,
            "deploy": self._deploy,
            "manage_process": self._manage_process,
            "set_env_variable": self._set_env_variable,
        }

    @property
    def root(self) -> str:
        return self.workspace.root

    @property
    def background(self) -> BackgroundProcessTable:
        return self.runner.background

    def catalog(self) -> List[ToolDefinition]:
        return [tool for name, tool in self.definitions.items() if name in self._handlers]

    def validate(self, name: str, arguments: Dict[str, Any]) -> List[str]:
        validator = self._validators.get(name)
        if validator is None:
            return []
        return [
            (f"{'.'.join(str(p) for p in err.path)}: {err.message}" if err.path else err.message)
            for err in sorted(validator.iter_errors(arguments), key=lambda e: list(e.path))
        ]

    def execute(self, invocation: ToolInvocation) -> ToolOutcome:
        """Run one invocation; every failure comes back as an error-flagged outcome."""
        name = invocation.name
        arguments = dict(invocation.arguments or {})
        logger.info("Executing tool %s (%s)", name, invocation.id)
        try:
            handler = self._handlers.get(name)
            if handler is None or name not in self.definitions:
                raise UnknownToolError(f"Unknown tool: {name}")
            errors = self.validate(name, arguments)
            if errors:
                raise InvalidArgumentsError(self.error_handler.handle_validation_error(errors))
            result = handler(arguments)
        except Exception as exc:
            return self.error_handler.handle_execution_error(exc, name, arguments, invocation.id)
        return ToolOutcome(tool_call_id=invocation.id, result=result, is_error=False, name=name)

    # --- handlers ---------------------------------------------------------------
    def _read_file(self, args: Dict[str, Any]) -> str:
        return self.workspace.read_file(args["path"])

    def _write_file(self, args: Dict[str, Any]) -> str:
        return self.workspace.write_file(args["path"], args["content"])

    def _list_directory(self, args: Dict[str, Any]) -> str:
        return self.workspace.list_directory(args.get("path") or ".", bool(args.get("recursive", False)))

    def _create_directory(self, args: Dict[str, Any]) -> str:
        return self.workspace.create_directory(args["path"])

    def _delete_file(self, args: Dict[str, Any]) -> str:
        return self.workspace.delete(args["path"], bool(args.get("recursive", False)))

    def _move_file(self, args: Dict[str, Any]) -> str:
        return self.workspace.move(args["source"], args["destination"])

    def _execute_shell(self, args: Dict[str, Any]) -> str:
        command = args["command"]
        if args.get("background"):
            record = self.runner.spawn_background(command)
            return f"Started background process with PID: {record.pid}"
        timeout = args.get("timeout")
        return self.runner.execute(command, int(timeout) if timeout else None)

    def _web_search(self, args: Dict[str, Any]) -> str:
        return web_search(args["query"], client=self.http_client, timeout_s=self.settings.web_search_timeout_s)

    def _get_system_info(self, args: Dict[str, Any]) -> str:
        return collect_system_info(self.runner, self.workspace.root)

    def _install_package(self, args: Dict[str, Any]) -> str:
        manager = args["manager"]
        base = INSTALL_COMMANDS.get(manager)
        if base is None:
            raise InvalidArgumentsError(f"Unknown package manager: {manager}")
        try:
            packages = shlex.split(args["packages"])
        except ValueError as exc:
            raise InvalidArgumentsError(f"Could not parse package list: {exc}") from exc
        if not packages:
            raise InvalidArgumentsError("No packages given")
        parts = [base]
        if manager == "npm" and args.get("dev"):
            parts.append("--save-dev")
        parts.extend(shlex.quote(p) for p in packages)
        return self.runner.execute(" ".join(parts), self.settings.install_timeout_ms)

    def _git_operation(self, args: Dict[str, Any]) -> str:
        operation = args["operation"]
        if operation not in GIT_OPERATIONS:
            raise InvalidArgumentsError(f"Unsupported git operation: {operation}")
        extra = (args.get("args") or "").strip()
        return self.runner.execute(f"git {operation} {extra}".strip())

    def _deploy(self, args: Dict[str, Any]) -> str:
        return self.deployer.deploy(args["target"], args.get("config"))

    def _manage_process(self, args: Dict[str, Any]) -> str:
        action = args["action"]
        if action == "list":
            return self.background.describe()
        pid = args.get("pid")
        if pid is None:
            raise InvalidArgumentsError(f"PID required for {action} action")
        pid = int(pid)
        if action == "kill":
            self.runner.kill_background(pid)
            return f"Killed process {pid}"
        if action == "restart":
            record = self.runner.restart_background(pid)
            return f"Restarted process {pid} as PID {record.pid}: {record.command}"
        raise InvalidArgumentsError(f"Unknown action: {action}")

    def _set_env_variable(self, args: Dict[str, Any]) -> str:
        persist = args.get("persist", True)
        return set_env_variable(self.env_overlay, self.env_file, args["key"], args["value"], bool(persist))
