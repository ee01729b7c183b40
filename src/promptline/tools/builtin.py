from __future__ import annotations

from .registry import ToolRegistry

from .builtin_tools.listdir import ListFilesTool
from .builtin_tools.glob_tool import GlobTool
from .builtin_tools.grep_tool import SearchTool
from .builtin_tools.file_read import ReadFileTool
from .builtin_tools.file_write import WriteFileTool
from .builtin_tools.file_edit import EditFileTool
from .builtin_tools.delete_file import DeleteFileTool
from .builtin_tools.bash_tool import ShellExecuteTool

def register_builtin_tools(registry: ToolRegistry) -> None:
    registry.register(ListFilesTool())
    registry.register(GlobTool())
    registry.register(SearchTool())
    registry.register(ReadFileTool())
    registry.register(WriteFileTool())
    registry.register(EditFileTool())
    registry.register(DeleteFileTool())
    registry.register(ShellExecuteTool())

def builtin_registry() -> ToolRegistry:
    registry = ToolRegistry()
    register_builtin_tools(registry)
    return registry.freeze()
