"""
C Program Reduction Agent — MCP Server

Exposes source-to-source reduction transformations via the Model Context
Protocol, one instance per call, so an external delta-debugging driver
(or an LLM) can apply, test and keep or revert each step:

  1. configure             — set the workspace root and extra macro defines
  2. list_transformations  — names and descriptions of registered passes
  3. query_instances       — count the opportunities a pass has in a file
  4. apply_transformation  — rewrite one numbered instance in a file
"""

from mcp.server.fastmcp import FastMCP
import logging
import os
import sys

# Ensure project modules are importable
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from arraydim.transformation import (
    TransformStatus, get_all_transformations, get_transformation,
)
import arraydim.reduce_array_dim  # noqa: F401  (registers reduce-array-dim)

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════
#  Server Setup
# ═══════════════════════════════════════════════════════════════════════

mcp = FastMCP("C Program Reduction Agent")

workspace_root = os.getcwd()
extra_defines = {}

DEFAULT_TRANSFORMATION = "reduce-array-dim"


def _resolve(file_path: str) -> str:
    """Resolve a (possibly POSIX-style) relative path against the workspace."""
    native = file_path.replace("/", os.sep).replace("\\", os.sep)
    if os.path.isabs(native):
        return native
    return os.path.join(workspace_root, native)


def _parse_defines(text: str) -> dict:
    """Parse "A=1,B,C=2" into {"A": "1", "B": "1", "C": "2"}."""
    defines = {}
    for item in text.split(","):
        item = item.strip()
        if not item:
            continue
        name, _, value = item.partition("=")
        defines[name.strip()] = value.strip() or "1"
    return defines


def _read_source(file_path: str):
    """Returns (text, error_message).  Exactly one is non-None."""
    full = _resolve(file_path)
    if not os.path.isfile(full):
        return None, f"Error: File not found at {full}"
    with open(full, "rb") as f:
        source = f.read()
    if b"\x00" in source[:8192]:
        return None, f"Error: {full} looks like a binary file"
    return source.decode("utf-8", errors="replace"), None


# ═══════════════════════════════════════════════════════════════════════
#  Tool 1 — Configure
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def configure(root: str = "", defines: str = "") -> str:
    """
    Sets the workspace root used to resolve relative file paths and the
    macro defines used when evaluating array extents.

    Args:
        root:    Workspace root directory.  Empty keeps the current root.
        defines: Comma-separated defines, e.g. "N=4,DEBUG".
    """
    global workspace_root, extra_defines

    if root.strip():
        if not os.path.isdir(root):
            return f"Error: Workspace root not found at {root}"
        workspace_root = root
    extra_defines = _parse_defines(defines)

    return (
        f"Workspace root: `{workspace_root}`\n"
        f"Defines: {len(extra_defines)} configured"
        + (f" ({', '.join(f'{k}={v}' for k, v in extra_defines.items())})"
           if extra_defines else "")
    )


# ═══════════════════════════════════════════════════════════════════════
#  Tool 2 — List Transformations
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def list_transformations() -> str:
    """Returns a markdown list of the registered transformations."""
    md = "## Transformations\n\n"
    for name, cls in sorted(get_all_transformations().items()):
        md += f"### `{name}`\n```\n{cls.description.rstrip()}\n```\n\n"
    return md


# ═══════════════════════════════════════════════════════════════════════
#  Tool 3 — Query Instances
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def query_instances(file_path: str, transformation: str = DEFAULT_TRANSFORMATION) -> str:
    """
    Counts how many instances of a transformation exist in a C file.
    Valid counters for apply_transformation are 1..N.

    Args:
        file_path:      Path to the C source (absolute or workspace-relative).
        transformation: Transformation name (default: reduce-array-dim).
    """
    try:
        cls = get_transformation(transformation)
    except KeyError as e:
        return f"Error: {e.args[0]}"

    text, err = _read_source(file_path)
    if err:
        return err

    try:
        count = cls(defines=extra_defines).query_instances(text, source_name=file_path)
    except Exception as e:
        logger.exception("query_instances failed for %s", file_path)
        return f"Error analysing {file_path}: {e}"

    return f"`{transformation}` has **{count}** instance(s) in `{file_path}`."


# ═══════════════════════════════════════════════════════════════════════
#  Tool 4 — Apply Transformation
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def apply_transformation(file_path: str, counter: int = 1,
                         transformation: str = DEFAULT_TRANSFORMATION,
                         output_path: str = "", dry_run: bool = False) -> str:
    """
    Applies one instance of a transformation to a C file.

    The result is one of: success (file rewritten), no-instance (counter
    exceeds the number of instances, nothing written), or internal-error
    (nothing written).

    Args:
        file_path:      Path to the C source (absolute or workspace-relative).
        counter:        1-based instance to transform.
        transformation: Transformation name (default: reduce-array-dim).
        output_path:    Where to write the result.  Empty overwrites file_path.
        dry_run:        If True, return the rewritten source without writing.
    """
    try:
        cls = get_transformation(transformation)
        instance = cls(counter=counter, defines=extra_defines)
    except (KeyError, ValueError) as e:
        return f"Error: {e.args[0]}"

    text, err = _read_source(file_path)
    if err:
        return err

    try:
        outcome = instance.transform(text, source_name=file_path)
    except Exception as e:
        logger.exception("%s failed for %s", transformation, file_path)
        return f"Error applying {transformation} to {file_path}: {e}"

    if outcome.status == TransformStatus.NO_INSTANCE:
        return f"**no-instance**: {outcome.message}"
    if outcome.status == TransformStatus.INTERNAL_ERROR:
        return f"**internal-error**: {outcome.message} (no changes written)"

    if dry_run:
        return (
            f"**success** [Dry Run] instance {counter} of {outcome.instance_count}\n"
            f"```c\n{outcome.output.rstrip()}\n```"
        )

    target = _resolve(output_path) if output_path.strip() else _resolve(file_path)
    with open(target, "wb") as f:
        f.write(outcome.output.encode("utf-8"))
    logger.info("Applied %s #%d to %s -> %s", transformation, counter, file_path, target)

    return (
        f"**success**: applied `{transformation}` instance {counter} of "
        f"{outcome.instance_count}; wrote `{target}`."
    )


if __name__ == "__main__":
    try:
        if hasattr(mcp, "_tool_manager") and hasattr(mcp._tool_manager, "_tools"):
            tools = mcp._tool_manager._tools.keys()
            print(f"DEBUG: Reduction Agent starting with {len(tools)} tools: {list(tools)}", file=sys.stderr)
        else:
            print("DEBUG: Reduction Agent starting (cannot inspect tools)", file=sys.stderr)
    except Exception as e:
        print(f"DEBUG: Error inspecting tools: {e}", file=sys.stderr)

    mcp.run()
