import io
import logging
from typing import Dict, Optional

from pcpp import Preprocessor, OutputDirective, Action

logger = logging.getLogger(__name__)


class _QuietPreprocessor(Preprocessor):
    """A pcpp Preprocessor that silences 'Include file not found' stderr noise.

    By default pcpp prints every missing-include error to stderr via
    ``on_error()``.  This subclass redirects those messages to Python's
    ``logging`` at DEBUG level and silently passes through unfound
    includes so preprocessing can continue.
    """

    def on_include_not_found(self, is_malformed, is_system_include, curdir, includepath):
        logger.debug("pcpp: include not found: %s (system=%s)", includepath, is_system_include)
        raise OutputDirective(Action.IgnoreAndPassThrough)

    def on_error(self, file, line, msg):
        logger.debug("pcpp: %s:%s: %s", file, line, msg)


class MacroTable:
    """
    Object-like macro definitions visible in a translation unit.

    The source is run through pcpp so that conditional compilation and
    injected defines (e.g. ``-DN=4``) decide which ``#define`` lines are
    live.  Only object-like macros are kept; their bodies are what array
    extents such as ``int a[N][M]`` refer to.
    """

    def __init__(self, defines: Optional[Dict[str, str]] = None):
        self.defines: Dict[str, str] = dict(defines or {})
        self.macros: Dict[str, str] = {}

    def add_define(self, name: str, value: str = "1"):
        """Add a global macro definition (e.g. -DDEBUG=1)."""
        self.defines[name] = value

    def load(self, text: str, source_name: str = "<input>") -> "MacroTable":
        pp = _QuietPreprocessor()
        for k, v in self.defines.items():
            pp.define(f"{k} {v}")

        try:
            pp.parse(text, source=source_name)
            pp.write(io.StringIO())
        except Exception as e:
            logger.warning("Macro harvesting failed for %s: %s", source_name, e)
            return self

        for name, macro in pp.macros.items():
            if getattr(macro, "arglist", None) is not None:
                continue
            value = getattr(macro, "value", None)
            if isinstance(value, list):
                self.macros[name] = "".join(tok.value for tok in value).strip()
            elif value is not None:
                self.macros[name] = str(value).strip()

        logger.debug("Harvested %d object-like macros from %s", len(self.macros), source_name)
        return self

    def get(self, name: str) -> Optional[str]:
        return self.macros.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self.macros
